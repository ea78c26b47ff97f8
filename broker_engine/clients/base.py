"""
Broker Engine - Exchange Client Base.

============================================================
PURPOSE
============================================================
Abstract per-market interface the engine relies on.

DESIGN PRINCIPLES:
- One client per (exchange, market, credentials)
- Account queries return exchange-native payloads; the engine
  normalizes them in projections
- Clients never retry; failures raise CredentialError or
  UpstreamError

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from ..types import (
    ApiKeyPermissions,
    ExchangeOrderType,
    Market,
    OrderSide,
    TimeInForce,
)


logger = logging.getLogger(__name__)


# ============================================================
# REQUEST / RESPONSE TYPES
# ============================================================

@dataclass
class SubmitOrderRequest:
    """Request to submit an order."""

    symbol: str
    """Trading symbol."""

    side: OrderSide
    """Order side."""

    order_type: ExchangeOrderType
    """Concrete exchange order type."""

    quantity: Decimal
    """Order quantity."""

    price: Optional[Decimal] = None
    """Limit price."""

    stop_price: Optional[Decimal] = None
    """Stop/trigger price."""

    time_in_force: Optional[TimeInForce] = None
    """Time in force (limit variants only)."""

    client_order_id: Optional[str] = None
    """Client order ID."""


@dataclass
class SubmitOrderResponse:
    """Response from order submission."""

    exchange_order_id: Optional[str] = None
    """Exchange-assigned order ID."""

    client_order_id: Optional[str] = None
    """Client order ID echoed by the exchange."""

    status: Optional[str] = None
    """Exchange status string (NEW, FILLED, ...)."""

    filled_quantity: Decimal = Decimal("0")
    """Already filled quantity."""

    exchange_timestamp: Optional[datetime] = None
    """Exchange timestamp."""

    raw_response: Dict[str, Any] = field(default_factory=dict)
    """Raw exchange response."""

    @property
    def is_filled(self) -> bool:
        """Whether the exchange reported a full fill at submission time."""
        return (self.status or "").upper() == "FILLED"


# ============================================================
# EXCHANGE CLIENT INTERFACE
# ============================================================

class ExchangeClient(ABC):
    """
    Abstract base class for per-market exchange clients.

    Implementations are async context managers owning their
    HTTP session.
    """

    @property
    @abstractmethod
    def exchange_id(self) -> str:
        """Exchange identifier."""
        pass

    @property
    @abstractmethod
    def market(self) -> Market:
        """Market served by this client."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass

    async def __aenter__(self) -> "ExchangeClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # --------------------------------------------------------
    # MARKET DATA / ORDERS
    # --------------------------------------------------------

    @abstractmethod
    async def get_price(self, symbol: str) -> Decimal:
        """Get the last traded price for a symbol."""
        pass

    @abstractmethod
    async def submit_order(self, request: SubmitOrderRequest) -> SubmitOrderResponse:
        """Submit a new order."""
        pass

    @abstractmethod
    async def get_open_orders(self) -> List[Dict[str, Any]]:
        """Get all open orders (exchange-native shape)."""
        pass


class SpotClient(ExchangeClient):
    """Spot market capabilities."""

    @property
    def market(self) -> Market:
        return Market.SPOT

    @abstractmethod
    async def get_account(self) -> Dict[str, Any]:
        """Get account information including per-asset balances."""
        pass

    @abstractmethod
    async def get_wallet_balances(self) -> List[Dict[str, Any]]:
        """Get per-wallet balances (spot, futures, ...)."""
        pass

    @abstractmethod
    async def get_api_key_permissions(self) -> ApiKeyPermissions:
        """Get the permissions granted to the client's API key."""
        pass


class FuturesClient(ExchangeClient):
    """Futures market capabilities."""

    @property
    def market(self) -> Market:
        return Market.FUTURES

    @abstractmethod
    async def get_positions(self) -> List[Dict[str, Any]]:
        """Get position risk for all symbols."""
        pass
