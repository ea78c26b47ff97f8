"""
Broker Engine Package.

============================================================
PURPOSE
============================================================
Order composition, exchange order type translation and
cached account state retrieval for user-attached brokers.

COMPONENTS:
- BrokerExecutionCoordinator: Entry point
- translator: Abstract -> concrete exchange order types
- flattener: Order tree -> persistable records
- AccountStateCache / BalanceHistoryAssembler: Read path
- clients: Per-market exchange clients

============================================================
"""

from .types import (
    Exchange,
    Market,
    BrokerStatus,
    OrderSide,
    OrderType,
    ExchangeOrderType,
    TriggerDirection,
    OrderVariant,
    TimeInForce,
    OrderStatus,
    PositionSide,
    OrderIntent,
    SubOrderList,
    OrderGroup,
    OrderRecord,
    Broker,
    ApiKeyPermissions,
    BrokerEngineError,
    ValidationError,
    CredentialError,
    NotFoundError,
    UpstreamError,
    UnrecordedOrderError,
)
from .config import ExchangeEndpoints, TimeoutConfig, CacheConfig, EngineConfig
from .translator import translate, resolve_trigger_direction
from .validation import validate_order_groups
from .flattener import flatten
from .cache import AccountStateCache, CacheKeys
from .balance_history import BalanceHistoryAssembler
from .repository import BrokerRepository, OrderRepository
from .coordinator import BrokerExecutionCoordinator


__all__ = [
    # Types
    "Exchange",
    "Market",
    "BrokerStatus",
    "OrderSide",
    "OrderType",
    "ExchangeOrderType",
    "TriggerDirection",
    "OrderVariant",
    "TimeInForce",
    "OrderStatus",
    "PositionSide",
    "OrderIntent",
    "SubOrderList",
    "OrderGroup",
    "OrderRecord",
    "Broker",
    "ApiKeyPermissions",
    # Errors
    "BrokerEngineError",
    "ValidationError",
    "CredentialError",
    "NotFoundError",
    "UpstreamError",
    "UnrecordedOrderError",
    # Config
    "ExchangeEndpoints",
    "TimeoutConfig",
    "CacheConfig",
    "EngineConfig",
    # Components
    "translate",
    "resolve_trigger_direction",
    "validate_order_groups",
    "flatten",
    "AccountStateCache",
    "CacheKeys",
    "BalanceHistoryAssembler",
    "BrokerRepository",
    "OrderRepository",
    "BrokerExecutionCoordinator",
]
