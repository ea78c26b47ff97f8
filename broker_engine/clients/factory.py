"""
Exchange Client Factory.

============================================================
PURPOSE
============================================================
Create the per-market client for a broker's credentials.

- Centralized client creation
- Configuration injection
- Registry keyed by (exchange, market) for extension

Unsupported exchanges and markets are rejected here, before
any client exists, so no exchange call can be made for them.

============================================================
"""

import logging
from typing import Callable, Dict, Optional, Tuple

from ..config import ExchangeEndpoints, TimeoutConfig
from ..types import Exchange, Market, ValidationError
from .base import ExchangeClient, FuturesClient, SpotClient
from .binance import BinanceFuturesClient, BinanceSpotClient


logger = logging.getLogger(__name__)


ClientCreator = Callable[[str, str], ExchangeClient]


class ClientFactory:
    """
    Factory for exchange clients.

    Creators receive (api_key, api_secret) and return a client.
    """

    def __init__(
        self,
        endpoints: Optional[ExchangeEndpoints] = None,
        timeout_config: Optional[TimeoutConfig] = None,
    ):
        self._endpoints = endpoints or ExchangeEndpoints()
        self._timeout_config = timeout_config or TimeoutConfig()
        self._creators: Dict[Tuple[Exchange, Market], ClientCreator] = {}

        self.register(Exchange.BINANCE, Market.SPOT, self._binance_spot)
        self.register(Exchange.BINANCE, Market.FUTURES, self._binance_futures)

    def register(
        self,
        exchange: Exchange,
        market: Market,
        creator: ClientCreator,
    ) -> None:
        """Register a creator for an exchange/market pair."""
        self._creators[(exchange, market)] = creator
        logger.debug(f"Registered client creator: {exchange.value}/{market.value}")

    def is_supported(self, exchange: Exchange, market: Market) -> bool:
        return (exchange, market) in self._creators

    def create(
        self,
        exchange: Exchange,
        market: Market,
        api_key: str,
        api_secret: str,
    ) -> ExchangeClient:
        """
        Create a client.

        Raises:
            ValidationError: If exchange/market is unsupported
        """
        if not isinstance(exchange, Exchange) or not isinstance(market, Market):
            raise ValidationError(f"Unsupported exchange or market: {exchange!r}/{market!r}")

        creator = self._creators.get((exchange, market))
        if creator is None:
            raise ValidationError(
                f"Unsupported exchange: {exchange.value} ({market.value})"
            )

        return creator(api_key, api_secret)

    def create_spot(self, exchange: Exchange, api_key: str, api_secret: str) -> SpotClient:
        return self.create(exchange, Market.SPOT, api_key, api_secret)

    def create_futures(self, exchange: Exchange, api_key: str, api_secret: str) -> FuturesClient:
        return self.create(exchange, Market.FUTURES, api_key, api_secret)

    # --------------------------------------------------------
    # BUILT-IN CREATORS
    # --------------------------------------------------------

    def _binance_spot(self, api_key: str, api_secret: str) -> ExchangeClient:
        return BinanceSpotClient(
            api_key=api_key,
            api_secret=api_secret,
            rest_url=self._endpoints.spot_rest_url,
            timeout_config=self._timeout_config,
        )

    def _binance_futures(self, api_key: str, api_secret: str) -> ExchangeClient:
        return BinanceFuturesClient(
            api_key=api_key,
            api_secret=api_secret,
            rest_url=self._endpoints.futures_rest_url,
            timeout_config=self._timeout_config,
        )
