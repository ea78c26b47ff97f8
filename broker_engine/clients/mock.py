"""
Broker Engine - Mock Exchange Clients.

============================================================
PURPOSE
============================================================
In-memory clients for testing the engine without an
exchange.

FEATURES:
- Configurable prices, fill behavior and permissions
- Configurable exchange-native account payloads
- Error injection per method
- Call recording

============================================================
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List
import uuid

from ..types import ApiKeyPermissions
from .base import (
    FuturesClient,
    SpotClient,
    SubmitOrderRequest,
    SubmitOrderResponse,
)


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

def _default_permissions() -> ApiKeyPermissions:
    return ApiKeyPermissions(
        enable_reading=True,
        enable_spot_and_margin_trading=True,
        enable_futures=True,
        enable_portfolio_margin_trading=False,
        ip_restricted=True,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@dataclass
class MockConfig:
    """Configuration shared by the mock clients."""

    default_price: Decimal = Decimal("50000")
    """Price returned for symbols without an explicit price."""

    prices: Dict[str, Decimal] = field(default_factory=dict)

    fill_status: str = "NEW"
    """Status reported for submitted orders."""

    permissions: ApiKeyPermissions = field(default_factory=_default_permissions)

    account: Dict[str, Any] = field(default_factory=lambda: {"balances": []})
    wallet_balances: List[Dict[str, Any]] = field(default_factory=list)
    positions: List[Dict[str, Any]] = field(default_factory=list)
    open_orders: List[Dict[str, Any]] = field(default_factory=list)

    errors: Dict[str, Exception] = field(default_factory=dict)
    """Method name -> exception raised when that method is called."""


# ============================================================
# MOCK CLIENTS
# ============================================================

class _MockClientMixin:

    def __init__(self, config: Optional[MockConfig] = None, api_key: str = "mock", api_secret: str = "mock"):
        self.config = config or MockConfig()
        self.api_key = api_key
        self.api_secret = api_secret
        self.calls: Dict[str, int] = defaultdict(int)
        self.submitted: List[SubmitOrderRequest] = []
        self.closed = False

    @property
    def exchange_id(self) -> str:
        return "mock"

    async def close(self) -> None:
        self.closed = True

    def _record(self, method: str) -> None:
        self.calls[method] += 1
        error = self.config.errors.get(method)
        if error is not None:
            raise error

    async def get_price(self, symbol: str) -> Decimal:
        self._record("get_price")
        return self.config.prices.get(symbol, self.config.default_price)

    async def submit_order(self, request: SubmitOrderRequest) -> SubmitOrderResponse:
        self._record("submit_order")
        self.submitted.append(request)
        filled = self.config.fill_status == "FILLED"
        return SubmitOrderResponse(
            exchange_order_id=str(uuid.uuid4().int % 10**10),
            client_order_id=request.client_order_id,
            status=self.config.fill_status,
            filled_quantity=request.quantity if filled else Decimal("0"),
            exchange_timestamp=datetime.now(timezone.utc),
        )

    async def get_open_orders(self) -> List[Dict[str, Any]]:
        self._record("get_open_orders")
        return list(self.config.open_orders)


class MockSpotClient(_MockClientMixin, SpotClient):
    """Mock spot client."""

    async def get_account(self) -> Dict[str, Any]:
        self._record("get_account")
        return self.config.account

    async def get_wallet_balances(self) -> List[Dict[str, Any]]:
        self._record("get_wallet_balances")
        return list(self.config.wallet_balances)

    async def get_api_key_permissions(self) -> ApiKeyPermissions:
        self._record("get_api_key_permissions")
        return self.config.permissions


class MockFuturesClient(_MockClientMixin, FuturesClient):
    """Mock futures client."""

    async def get_positions(self) -> List[Dict[str, Any]]:
        self._record("get_positions")
        return list(self.config.positions)
