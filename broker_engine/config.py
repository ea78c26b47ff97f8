"""
Broker Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Broker Engine.

CRITICAL CONSTRAINTS:
- No retries inside the engine
- Cached account views expire on a fixed TTL
- Daily balances are kept for the longest history window

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


# ============================================================
# EXCHANGE ENDPOINTS
# ============================================================

@dataclass
class ExchangeEndpoints:
    """REST base URLs per market."""

    spot_rest_url: str = "https://api.binance.com"
    futures_rest_url: str = "https://fapi.binance.com"

    testnet: bool = False

    def __post_init__(self):
        if self.testnet:
            self.spot_rest_url = "https://testnet.binance.vision"
            self.futures_rest_url = "https://testnet.binancefuture.com"


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Timeout configuration.

    Applied to the aiohttp session of each exchange client. The engine
    itself never retries.
    """

    connection_timeout_seconds: float = 5.0
    """Connection timeout."""

    read_timeout_seconds: float = 30.0
    """Total timeout for a request."""

    recv_window_ms: int = 5000
    """Binance receive window for signed requests."""


# ============================================================
# CACHE CONFIGURATION
# ============================================================

@dataclass
class CacheConfig:
    """Account state cache configuration."""

    namespace: str = "tradingflow"
    """Prefix for every cache key."""

    snapshot_ttl_seconds: int = 30
    """TTL for holdings, positions and open orders."""

    daily_balance_ttl_seconds: int = 60 * 60 * 24 * 30
    """TTL for a day's balance entry (30 days)."""

    max_history_days: int = 30
    """Longest balance history that can be requested."""


# ============================================================
# ENGINE CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """Top-level configuration."""

    database_url: str = "postgresql+asyncpg://localhost:5432/tradingflow"
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None

    endpoints: ExchangeEndpoints = field(default_factory=ExchangeEndpoints)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Create config from environment variables (.env is loaded first).

        Returns:
            EngineConfig
        """
        load_dotenv()

        defaults = cls()
        timeout = os.environ.get("EXCHANGE_TIMEOUT_SECONDS")

        return cls(
            database_url=os.environ.get("DATABASE_URL", defaults.database_url),
            redis_url=os.environ.get("REDIS_URL", defaults.redis_url),
            redis_password=os.environ.get("REDIS_PASSWORD") or None,
            endpoints=ExchangeEndpoints(
                testnet=os.environ.get("BINANCE_TESTNET", "false").lower() == "true",
            ),
            timeouts=TimeoutConfig(
                read_timeout_seconds=float(timeout) if timeout else 30.0,
            ),
            cache=CacheConfig(
                namespace=os.environ.get("CACHE_NAMESPACE", "tradingflow"),
            ),
        )
