"""
Broker Engine - Snapshot Projections.

============================================================
PURPOSE
============================================================
Normalize exchange-native account payloads into the cached
snapshot views.

- Drop zero holdings / positions
- Map exchange enums to the engine's lower-case vocabulary
- Coerce numeric strings to numbers
- Convert millisecond timestamps to UTC datetimes

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .snapshots import Holding, OpenOrder, Position, WalletBalance
from .types import Market, PositionSide


_SPOT_ORDER_TYPES = {
    "STOP_LOSS": "stop_loss_market",
    "TAKE_PROFIT": "take_profit_market",
}

_FUTURES_ORDER_TYPES = {
    "STOP": "stop_loss_limit",
    "STOP_MARKET": "stop_loss_market",
    "TAKE_PROFIT": "take_profit_limit",
}

_WALLET_ACCOUNTS = {
    "Spot": "spot",
    "USDⓈ-M Futures": "futures",
}


def _number(value: Any) -> float:
    return float(value) if value not in (None, "") else 0.0


def _optional_number(value: Any) -> Optional[float]:
    number = _number(value)
    return number if number != 0 else None


def _instant(millis: Any) -> datetime:
    return datetime.fromtimestamp(int(millis) / 1000, tz=timezone.utc)


def _position_side(value: str) -> str:
    try:
        return PositionSide[value].value
    except KeyError:
        return PositionSide.BOTH.value


# ============================================================
# PROJECTIONS
# ============================================================

def project_holdings(account: Dict[str, Any]) -> List[Holding]:
    """Spot account balances -> non-zero holdings."""
    holdings = []
    for balance in account.get("balances", []):
        free = _number(balance.get("free"))
        locked = _number(balance.get("locked"))
        if free == 0 and locked == 0:
            continue
        holdings.append(Holding(symbol=balance["asset"], amount=free + locked))
    return holdings


def project_positions(positions: List[Dict[str, Any]]) -> List[Position]:
    """Futures position risk -> open positions."""
    projected = []
    for position in positions:
        quantity = _number(position.get("positionAmt"))
        if quantity == 0:
            continue
        projected.append(Position(
            symbol=position["symbol"],
            position_side=_position_side(position.get("positionSide", "BOTH")),
            quantity=quantity,
            liquidation_price=_number(position.get("liquidationPrice")),
            unrealized_pnl=_number(position.get("unRealizedProfit")),
            amount=_number(position.get("notional")),
            entry_price=_number(position.get("entryPrice")),
            mark_price=_number(position.get("markPrice")),
            updated_at=_instant(position.get("updateTime", 0)),
        ))
    return projected


def _order_type(market: Market, exchange_type: str) -> str:
    mapping = _SPOT_ORDER_TYPES if market == Market.SPOT else _FUTURES_ORDER_TYPES
    return mapping.get(exchange_type, exchange_type.lower())


def project_open_orders(market: Market, orders: List[Dict[str, Any]]) -> List[OpenOrder]:
    """Open orders of either market -> normalized open orders."""
    projected = []
    for order in orders:
        status = order.get("status", "NEW")
        projected.append(OpenOrder(
            order_id=order["clientOrderId"],
            symbol=order["symbol"],
            side="buy" if order["side"] == "BUY" else "sell",
            position_side=(
                _position_side(order.get("positionSide", "BOTH"))
                if market == Market.FUTURES else None
            ),
            type=_order_type(market, order["type"]),
            price=_optional_number(order.get("price")),
            stop_price=_optional_number(order.get("stopPrice")),
            quantity=_number(order.get("origQty")),
            filled_quantity=_number(order.get("executedQty")),
            status="open" if status == "NEW" else status.lower(),
            created_at=_instant(order["time"]),
            updated_at=_instant(order.get("updateTime", order["time"])),
        ))
    return projected


def project_wallet_balances(wallets: List[Dict[str, Any]]) -> List[WalletBalance]:
    """Wallet balances -> spot and USD-M futures wallet balances."""
    return [
        WalletBalance(
            account=_WALLET_ACCOUNTS[wallet["walletName"]],
            balance=_number(wallet.get("balance")),
        )
        for wallet in wallets
        if wallet.get("walletName") in _WALLET_ACCOUNTS
    ]
