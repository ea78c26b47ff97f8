"""
Broker Engine - Binance Clients.

============================================================
PURPOSE
============================================================
REST clients for Binance Spot and Binance USD-M Futures.

- Request signing (HMAC-SHA256)
- Error mapping into CredentialError / UpstreamError
- Session lifecycle

No rate limiting and no retries: callers impose their own
policy at the boundary.

============================================================
"""

import asyncio
import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List
from urllib.parse import urlencode

import aiohttp

from ..config import TimeoutConfig
from ..errors import map_binance_error, to_engine_error
from ..types import ApiKeyPermissions, UpstreamError
from .base import (
    FuturesClient,
    SpotClient,
    SubmitOrderRequest,
    SubmitOrderResponse,
)


logger = logging.getLogger(__name__)


def mask_key(api_key: str) -> str:
    """Mask an API key for logging."""
    if len(api_key) <= 4:
        return "****"
    return f"****{api_key[-4:]}"


def _from_millis(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


# ============================================================
# SHARED REST TRANSPORT
# ============================================================

class BinanceRestClient:
    """
    Signed REST transport shared by the spot and futures clients.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        rest_url: str,
        timeout_config: Optional[TimeoutConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize Binance client.

        Args:
            api_key: API key
            api_secret: API secret
            rest_url: REST base URL for the market
            timeout_config: Timeout configuration
            session: Existing session to reuse (not closed by the client)
        """
        self._api_key = api_key
        self._api_secret = api_secret
        self._rest_url = rest_url.rstrip("/")
        self._timeout_config = timeout_config or TimeoutConfig()

        self._session = session
        self._owns_session = session is None

    @property
    def exchange_id(self) -> str:
        return "binance"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                connect=self._timeout_config.connection_timeout_seconds,
                total=self._timeout_config.read_timeout_seconds,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _sign(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params["timestamp"] = str(int(time.time() * 1000))
        params["recvWindow"] = str(self._timeout_config.recv_window_ms)
        query_string = urlencode(params)
        params["signature"] = hmac.new(
            self._api_secret.encode(),
            query_string.encode(),
            hashlib.sha256,
        ).hexdigest()
        return params

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        """Make API request."""
        url = f"{self._rest_url}{path}"
        headers = {"X-MBX-APIKEY": self._api_key}

        params = dict(params or {})
        if signed:
            params = self._sign(params)

        session = self._get_session()

        try:
            async with session.request(
                method,
                url,
                params=params if method == "GET" else None,
                data=params if method != "GET" else None,
                headers=headers,
            ) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    raise UpstreamError(
                        f"Non-JSON response from {path} (HTTP {response.status})",
                        code="EXC_UNKNOWN_ERROR",
                    )

                if response.status != 200:
                    code = data.get("code", -1) if isinstance(data, dict) else -1
                    msg = data.get("msg", "Unknown error") if isinstance(data, dict) else str(data)
                    internal_code = map_binance_error(code)
                    logger.warning(
                        f"Binance {method} {path} failed for key {mask_key(self._api_key)}: "
                        f"{code} {msg}"
                    )
                    raise to_engine_error(internal_code, msg)

                return data

        except aiohttp.ClientError as e:
            raise UpstreamError(
                f"Network error: {e}",
                code="NET_CONNECTION_FAILED",
                is_retryable=True,
            ) from e
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                "Request timeout",
                code="TMO_READ",
                is_retryable=True,
            ) from e

    @staticmethod
    def _order_params(request: SubmitOrderRequest) -> Dict[str, Any]:
        params = {
            "symbol": request.symbol,
            "side": request.side.value.upper(),
            "type": request.order_type.value,
            "quantity": str(request.quantity),
            "newOrderRespType": "RESULT",
        }

        if request.price is not None:
            params["price"] = str(request.price)

        if request.stop_price is not None:
            params["stopPrice"] = str(request.stop_price)

        if request.time_in_force is not None:
            params["timeInForce"] = request.time_in_force.value

        if request.client_order_id:
            params["newClientOrderId"] = request.client_order_id

        return params

    @staticmethod
    def _order_response(data: Dict[str, Any]) -> SubmitOrderResponse:
        return SubmitOrderResponse(
            exchange_order_id=str(data["orderId"]) if "orderId" in data else None,
            client_order_id=data.get("clientOrderId"),
            status=data.get("status"),
            filled_quantity=Decimal(data.get("executedQty", "0")),
            exchange_timestamp=_from_millis(data.get("updateTime", data.get("transactTime"))),
            raw_response=data,
        )


# ============================================================
# SPOT
# ============================================================

class BinanceSpotClient(BinanceRestClient, SpotClient):
    """Binance Spot (and wallet-level SAPI) client."""

    async def get_price(self, symbol: str) -> Decimal:
        data = await self._request("GET", "/api/v3/ticker/price", params={"symbol": symbol})
        return Decimal(data["price"])

    async def submit_order(self, request: SubmitOrderRequest) -> SubmitOrderResponse:
        data = await self._request(
            "POST", "/api/v3/order", params=self._order_params(request), signed=True,
        )
        logger.info(
            f"Spot order accepted: {request.symbol} {request.order_type.value} "
            f"client_id={request.client_order_id} status={data.get('status')}"
        )
        return self._order_response(data)

    async def get_open_orders(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/v3/openOrders", signed=True)

    async def get_account(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/v3/account", signed=True)

    async def get_wallet_balances(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/sapi/v1/asset/wallet/balance", signed=True)

    async def get_api_key_permissions(self) -> ApiKeyPermissions:
        data = await self._request("GET", "/sapi/v1/account/apiRestrictions", signed=True)
        return ApiKeyPermissions(
            enable_reading=data.get("enableReading") is True,
            enable_spot_and_margin_trading=data.get("enableSpotAndMarginTrading") is True,
            enable_futures=data.get("enableFutures") is True,
            enable_portfolio_margin_trading=data.get("enablePortfolioMarginTrading"),
            ip_restricted=bool(data.get("ipRestrict", False)),
            created_at=_from_millis(data["createTime"]),
        )


# ============================================================
# USD-M FUTURES
# ============================================================

class BinanceFuturesClient(BinanceRestClient, FuturesClient):
    """Binance USD-M Futures client."""

    async def get_price(self, symbol: str) -> Decimal:
        data = await self._request("GET", "/fapi/v2/ticker/price", params={"symbol": symbol})
        return Decimal(data["price"])

    async def submit_order(self, request: SubmitOrderRequest) -> SubmitOrderResponse:
        data = await self._request(
            "POST", "/fapi/v1/order", params=self._order_params(request), signed=True,
        )
        logger.info(
            f"Futures order accepted: {request.symbol} {request.order_type.value} "
            f"client_id={request.client_order_id} status={data.get('status')}"
        )
        return self._order_response(data)

    async def get_open_orders(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/fapi/v1/openOrders", signed=True)

    async def get_positions(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/fapi/v3/positionRisk", signed=True)
