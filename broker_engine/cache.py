"""
Broker Engine - Account State Cache.

============================================================
PURPOSE
============================================================
Cache-aside store for derived account views in Redis.

NAMESPACES (per broker):
- holdings             30 s
- positions            30 s
- open orders/market   30 s
- daily balance/day    30 days

Reads within the TTL never reach the exchange. Exchange rate
limits make per-request live queries infeasible, so this is
required behavior, not an optimization.

Concurrent writers to one key are last-write-wins; every
value here is recomputable from the exchange.

============================================================
"""

import logging
from datetime import date
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from pydantic import TypeAdapter
from redis.asyncio import Redis

from .config import CacheConfig
from .types import Market


logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================
# KEYS
# ============================================================

class CacheKeys:
    """
    Key formats for the account state cache.

    Format: "{namespace}:broker:{broker_id}:{view}[:{qualifier}]"
    """

    def __init__(self, namespace: str):
        self._namespace = namespace

    def _broker(self, broker_id: str) -> str:
        return f"{self._namespace}:broker:{broker_id}"

    def holdings(self, broker_id: str) -> str:
        return f"{self._broker(broker_id)}:holdings"

    def positions(self, broker_id: str) -> str:
        return f"{self._broker(broker_id)}:positions"

    def open_orders(self, broker_id: str, market: Market) -> str:
        return f"{self._broker(broker_id)}:open_orders:{market.value}"

    def daily_balance(self, broker_id: str, day: date) -> str:
        """Daily balance key, day is a UTC calendar date."""
        return f"{self._broker(broker_id)}:balance:{day.isoformat()}"


# ============================================================
# CACHE
# ============================================================

class AccountStateCache:
    """
    Cache-aside layer over Redis.

    Values are serialized with pydantic type adapters. A value
    returned on a miss is decoded from the same JSON a later hit
    reads, so both paths return equal values.
    """

    def __init__(self, redis_client: Redis, config: Optional[CacheConfig] = None):
        """
        Initialize cache.

        Args:
            redis_client: Async Redis client
            config: Cache configuration
        """
        self._redis = redis_client
        self._config = config or CacheConfig()
        self.keys = CacheKeys(self._config.namespace)

    @property
    def config(self) -> CacheConfig:
        return self._config

    async def get(self, key: str, adapter: TypeAdapter) -> Optional[T]:
        """Get a cached value, or None on miss."""
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return adapter.validate_json(raw)

    async def get_many(self, keys: Sequence[str], adapter: TypeAdapter) -> List[Optional[T]]:
        """Get several values in one round trip, None for each miss."""
        if not keys:
            return []
        raws = await self._redis.mget(list(keys))
        return [adapter.validate_json(raw) if raw is not None else None for raw in raws]

    async def set(self, key: str, value: T, adapter: TypeAdapter, ttl_seconds: int) -> T:
        """
        Store a value with a TTL.

        Returns:
            The value as it will be read back from the cache
        """
        raw = adapter.dump_json(value)
        await self._redis.set(key, raw, ex=ttl_seconds)
        return adapter.validate_json(raw)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        adapter: TypeAdapter,
        ttl_seconds: Optional[int] = None,
    ) -> T:
        """
        Read through the cache.

        Args:
            key: Cache key
            fetch: Produces a fresh value on miss
            adapter: Serializer for the value
            ttl_seconds: TTL for a fresh value (defaults to the snapshot TTL)
        """
        cached = await self.get(key, adapter)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return cached

        logger.debug(f"Cache miss: {key}")
        value = await fetch()
        ttl = ttl_seconds if ttl_seconds is not None else self._config.snapshot_ttl_seconds
        return await self.set(key, value, adapter, ttl)
