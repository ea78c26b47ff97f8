"""
Broker Engine - Order Type Translator.

============================================================
PURPOSE
============================================================
Resolve an abstract order type into the concrete exchange
order type.

Exchanges have no "stop-loss vs take-profit" flag. Intent is
inferred from where the trigger sits relative to the live
price, crossed with the order side:

    side   stop vs current    direction
    ----   ---------------    -----------
    buy    above              stop-entry
    buy    at or below        take-profit
    sell   above              take-profit
    sell   at or below        stop-entry

The concrete name then depends on market and variant only.

============================================================
"""

from decimal import Decimal
from typing import Dict, Optional, Tuple

from .types import (
    ExchangeOrderType,
    Market,
    OrderSide,
    OrderType,
    OrderVariant,
    TriggerDirection,
)


# ============================================================
# LOOKUP TABLE
# ============================================================

STOP_ORDER_TYPES: Dict[Tuple[Market, TriggerDirection, OrderVariant], ExchangeOrderType] = {
    (Market.SPOT, TriggerDirection.STOP_ENTRY, OrderVariant.LIMIT): ExchangeOrderType.STOP_LOSS_LIMIT,
    (Market.SPOT, TriggerDirection.STOP_ENTRY, OrderVariant.MARKET): ExchangeOrderType.STOP_LOSS,
    (Market.SPOT, TriggerDirection.TAKE_PROFIT, OrderVariant.LIMIT): ExchangeOrderType.TAKE_PROFIT_LIMIT,
    (Market.SPOT, TriggerDirection.TAKE_PROFIT, OrderVariant.MARKET): ExchangeOrderType.TAKE_PROFIT,
    (Market.FUTURES, TriggerDirection.STOP_ENTRY, OrderVariant.LIMIT): ExchangeOrderType.STOP,
    (Market.FUTURES, TriggerDirection.STOP_ENTRY, OrderVariant.MARKET): ExchangeOrderType.STOP_MARKET,
    (Market.FUTURES, TriggerDirection.TAKE_PROFIT, OrderVariant.LIMIT): ExchangeOrderType.TAKE_PROFIT,
    (Market.FUTURES, TriggerDirection.TAKE_PROFIT, OrderVariant.MARKET): ExchangeOrderType.TAKE_PROFIT_MARKET,
}

_STOP_VARIANTS: Dict[OrderType, OrderVariant] = {
    OrderType.STOP_LOSS_LIMIT: OrderVariant.LIMIT,
    OrderType.STOP_LOSS_MARKET: OrderVariant.MARKET,
}


# ============================================================
# TRANSLATION
# ============================================================

def resolve_trigger_direction(
    side: OrderSide,
    stop_price: Decimal,
    current_price: Decimal,
) -> TriggerDirection:
    """Infer stop-entry vs take-profit from trigger position and side."""
    stop_above = stop_price > current_price
    if (side == OrderSide.BUY) == stop_above:
        return TriggerDirection.STOP_ENTRY
    return TriggerDirection.TAKE_PROFIT


def translate(
    market: Market,
    side: OrderSide,
    order_type: OrderType,
    stop_price: Optional[Decimal],
    current_price: Decimal,
) -> ExchangeOrderType:
    """
    Map an abstract order type to the concrete exchange type.

    Args:
        market: Spot or futures
        side: Order side
        order_type: Abstract order type
        stop_price: Trigger price (required for stop types)
        current_price: Live price of the symbol

    Returns:
        Concrete exchange order type
    """
    if order_type == OrderType.LIMIT:
        return ExchangeOrderType.LIMIT
    if order_type == OrderType.MARKET:
        return ExchangeOrderType.MARKET

    if stop_price is None:
        raise ValueError(f"{order_type.value} requires a stop price")

    direction = resolve_trigger_direction(side, stop_price, current_price)
    return STOP_ORDER_TYPES[(market, direction, _STOP_VARIANTS[order_type])]
