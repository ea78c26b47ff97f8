"""
Broker Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Broker Engine.

- Exchange / market / order vocabularies
- The two-level order tree submitted by users
- Persisted broker and order records
- Exception taxonomy returned to the boundary

============================================================
"""

from datetime import datetime
from typing import Optional, List
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


# ============================================================
# EXCHANGE / MARKET
# ============================================================

class Exchange(Enum):
    """Exchange a broker's credentials belong to."""

    BINANCE = "binance"
    BYBIT = "bybit"


class Market(Enum):
    """Market within an exchange."""

    SPOT = "spot"
    FUTURES = "futures"


class BrokerStatus(Enum):
    """Credential validation status."""

    OK = "ok"
    BAD = "bad"


# ============================================================
# ORDER VOCABULARY
# ============================================================

class OrderSide(Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"


class OrderType(Enum):
    """
    Abstract order type as submitted by users.

    The concrete exchange type is resolved by the translator.
    """

    MARKET = "market"
    LIMIT = "limit"
    STOP_LOSS_LIMIT = "stop_loss_limit"
    STOP_LOSS_MARKET = "stop_loss_market"

    @property
    def requires_price(self) -> bool:
        """Limit variants need a limit price."""
        return self.value.endswith("limit")

    @property
    def requires_stop_price(self) -> bool:
        """Stop variants need a trigger price."""
        return self.value.startswith("stop_loss")


class ExchangeOrderType(Enum):
    """Concrete order type sent to the exchange."""

    MARKET = "MARKET"
    LIMIT = "LIMIT"

    # Spot
    STOP_LOSS = "STOP_LOSS"
    STOP_LOSS_LIMIT = "STOP_LOSS_LIMIT"
    TAKE_PROFIT = "TAKE_PROFIT"
    TAKE_PROFIT_LIMIT = "TAKE_PROFIT_LIMIT"

    # Futures (TAKE_PROFIT is shared with spot)
    STOP = "STOP"
    STOP_MARKET = "STOP_MARKET"
    TAKE_PROFIT_MARKET = "TAKE_PROFIT_MARKET"


class TriggerDirection(Enum):
    """What a stop trigger is meant to do relative to the live price."""

    STOP_ENTRY = "stop_entry"
    TAKE_PROFIT = "take_profit"


class OrderVariant(Enum):
    """Execution variant once a trigger fires."""

    LIMIT = "limit"
    MARKET = "market"


class TimeInForce(Enum):
    """Time in force for orders."""

    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


class OrderStatus(Enum):
    """Lifecycle status of a persisted order."""

    PENDING = "pending"
    OPEN = "open"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class PositionSide(Enum):
    """Futures position side (BOTH = one-way mode)."""

    BOTH = "both"
    LONG = "long"
    SHORT = "short"


# ============================================================
# ORDER TREE
# ============================================================

@dataclass
class OrderIntent:
    """A single leg of an order submission."""

    order_id: str
    """Client-assigned id, reused as exchange client order id."""

    side: OrderSide
    order_type: OrderType
    quantity: Decimal

    price: Optional[Decimal] = None
    """Limit price (limit variants only)."""

    stop_price: Optional[Decimal] = None
    """Trigger price (stop variants only)."""

    parent_order_id: Optional[str] = None
    """Leg this one depends on, e.g. a stop attached to an entry."""


@dataclass
class SubOrderList:
    """Dependent batch nested under a group. Cannot nest further."""

    batch_orders: List[OrderIntent] = field(default_factory=list)


@dataclass
class OrderGroup:
    """
    Top-level unit of an order submission.

    Fixed depth: group -> batch_orders -> sub_order_lists[].batch_orders.
    """

    market: Market
    symbol: str
    batch_orders: List[OrderIntent] = field(default_factory=list)
    sub_order_lists: List[SubOrderList] = field(default_factory=list)

    def iter_legs(self):
        """Yield every leg in submission order."""
        yield from self.batch_orders
        for sub_list in self.sub_order_lists:
            yield from sub_list.batch_orders

    @property
    def leg_count(self) -> int:
        return len(self.batch_orders) + sum(
            len(sub_list.batch_orders) for sub_list in self.sub_order_lists
        )


# ============================================================
# RECORDS
# ============================================================

@dataclass
class OrderRecord:
    """Persistable order row produced by flattening an order tree."""

    order_id: str
    broker_id: str
    market: Market
    symbol: str
    side: OrderSide
    order_type: OrderType
    quantity: Decimal
    price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    parent_order_id: Optional[str] = None

    exchange_order_id: Optional[str] = None
    """Exchange-assigned id, only set on the submitted leg."""

    status: OrderStatus = OrderStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Broker:
    """A user's attached exchange credentials."""

    broker_id: str
    user_id: str
    exchange: Exchange
    label: str
    api_key: str
    api_secret: str
    status: BrokerStatus
    ip_restricted: bool
    credentials_created_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def has_same_credentials(
        self,
        exchange: Exchange,
        api_key: str,
        api_secret: str,
    ) -> bool:
        """Whether the given credential fields match the stored ones."""
        return (
            self.exchange == exchange
            and self.api_key == api_key
            and self.api_secret == api_secret
        )


@dataclass
class ApiKeyPermissions:
    """Capabilities an exchange reports for an API key."""

    enable_reading: bool
    enable_spot_and_margin_trading: bool
    enable_futures: bool
    enable_portfolio_margin_trading: Optional[bool]
    """None when the exchange did not report the flag."""

    ip_restricted: bool
    created_at: datetime
    """When the exchange issued the key."""

    def allows_trading(self) -> bool:
        """
        Accept only keys that can read, trade spot and futures, and are
        not enrolled in portfolio margin.
        """
        return (
            self.enable_reading is True
            and self.enable_spot_and_margin_trading is True
            and self.enable_futures is True
            and self.enable_portfolio_margin_trading is False
        )

    def missing_permissions(self) -> List[str]:
        missing = []
        if self.enable_reading is not True:
            missing.append("enableReading")
        if self.enable_spot_and_margin_trading is not True:
            missing.append("enableSpotAndMarginTrading")
        if self.enable_futures is not True:
            missing.append("enableFutures")
        if self.enable_portfolio_margin_trading is not False:
            missing.append("enablePortfolioMarginTrading must be disabled")
        return missing


# ============================================================
# EXCEPTIONS
# ============================================================

class BrokerEngineError(Exception):
    """Base exception for Broker Engine."""
    pass


class ValidationError(BrokerEngineError):
    """Request rejected before any I/O."""
    pass


class CredentialError(BrokerEngineError):
    """Exchange reports insufficient or invalid credentials."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class NotFoundError(BrokerEngineError):
    """Broker does not resolve for the caller."""
    pass


class UpstreamError(BrokerEngineError):
    """Exchange communication failed."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        is_retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.is_retryable = is_retryable


class UnrecordedOrderError(BrokerEngineError):
    """The exchange accepted an order but its records were not persisted."""

    def __init__(self, message: str, order_id: str, exchange_order_id: Optional[str]):
        super().__init__(message)
        self.order_id = order_id
        self.exchange_order_id = exchange_order_id
