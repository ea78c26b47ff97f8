"""
Broker Engine - Clients Package.

============================================================
PURPOSE
============================================================
Per-market exchange clients.

AVAILABLE CLIENTS:
- BinanceSpotClient: Binance Spot + wallet SAPI
- BinanceFuturesClient: Binance USD-M Futures
- MockSpotClient / MockFuturesClient: For testing

UTILITIES:
- ClientFactory: Creates the client for (exchange, market)

============================================================
"""

from .base import (
    ExchangeClient,
    SpotClient,
    FuturesClient,
    SubmitOrderRequest,
    SubmitOrderResponse,
)
from .binance import BinanceRestClient, BinanceSpotClient, BinanceFuturesClient, mask_key
from .mock import MockConfig, MockSpotClient, MockFuturesClient
from .factory import ClientFactory


__all__ = [
    "ExchangeClient",
    "SpotClient",
    "FuturesClient",
    "SubmitOrderRequest",
    "SubmitOrderResponse",
    "BinanceRestClient",
    "BinanceSpotClient",
    "BinanceFuturesClient",
    "mask_key",
    "MockConfig",
    "MockSpotClient",
    "MockFuturesClient",
    "ClientFactory",
]
