"""
Shared test fixtures.

============================================================
PURPOSE
============================================================
In-memory collaborators for the broker engine.

- Dict-backed broker and order repositories
- FakeRedis-backed account state cache
- Mock spot/futures clients registered on a ClientFactory
- Fixed clock

============================================================
"""

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

import fakeredis
import pytest
from fakeredis.aioredis import FakeRedis

from broker_engine.cache import AccountStateCache
from broker_engine.clients.factory import ClientFactory
from broker_engine.clients.mock import MockConfig, MockFuturesClient, MockSpotClient
from broker_engine.config import CacheConfig
from broker_engine.coordinator import BrokerExecutionCoordinator
from broker_engine.types import Broker, Exchange, Market, OrderRecord
from core.clock import MockClock
from database.engine import DatabasePersistenceError


FIXED_NOW = datetime(2024, 6, 15, 12, 30, tzinfo=timezone.utc)


# ============================================================
# IN-MEMORY REPOSITORIES
# ============================================================

class InMemoryOrderRepository:
    """
    Same interface as OrderRepository, backed by a list.

    Order ids are unique like the table's primary key. Set
    `fail_with` to make every insert raise.
    """

    def __init__(self):
        self.records: List[OrderRecord] = []
        self.insert_calls = 0
        self.fail_with: Optional[Exception] = None

    async def add_all(self, records: List[OrderRecord]) -> None:
        self.insert_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        stored = {r.order_id for r in self.records}
        if any(r.order_id in stored for r in records):
            raise DatabasePersistenceError("Conflicting order insert: record already exists")
        self.records.extend(replace(r) for r in records)

    async def existing_ids(self, order_ids: List[str]) -> List[str]:
        stored = {r.order_id for r in self.records}
        return [order_id for order_id in order_ids if order_id in stored]

    async def list_for_broker(self, broker_id: str, limit: int = 500) -> List[OrderRecord]:
        return [replace(r) for r in self.records if r.broker_id == broker_id][:limit]


class InMemoryBrokerRepository:
    """Same interface as BrokerRepository, backed by a dict."""

    def __init__(self, orders: InMemoryOrderRepository):
        self.brokers: Dict[str, Broker] = {}
        self._orders = orders

    async def add(self, broker: Broker) -> Broker:
        stored = replace(
            broker,
            broker_id=broker.broker_id or uuid.uuid4().hex,
            created_at=FIXED_NOW,
            updated_at=FIXED_NOW,
        )
        self.brokers[stored.broker_id] = stored
        return replace(stored)

    async def get(self, broker_id: str, user_id: str) -> Optional[Broker]:
        broker = self.brokers.get(broker_id)
        if broker is None or broker.user_id != user_id:
            return None
        return replace(broker)

    async def list_for_user(self, user_id: str) -> List[Broker]:
        return [replace(b) for b in self.brokers.values() if b.user_id == user_id]

    async def find_by_credentials(self, api_key: str, api_secret: str) -> Optional[Broker]:
        for broker in self.brokers.values():
            if broker.api_key == api_key and broker.api_secret == api_secret:
                return replace(broker)
        return None

    async def find_by_label(self, user_id: str, label: str) -> Optional[Broker]:
        for broker in self.brokers.values():
            if broker.user_id == user_id and broker.label == label:
                return replace(broker)
        return None

    async def update(self, broker: Broker) -> Broker:
        self.brokers[broker.broker_id] = replace(broker)
        return replace(broker)

    async def update_label(self, broker_id: str, user_id: str, label: str) -> Broker:
        stored = replace(self.brokers[broker_id], label=label)
        self.brokers[broker_id] = stored
        return replace(stored)

    async def delete(self, broker_id: str, user_id: str) -> bool:
        if await self.get(broker_id, user_id) is None:
            return False
        del self.brokers[broker_id]
        self._orders.records = [r for r in self._orders.records if r.broker_id != broker_id]
        return True


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock(FIXED_NOW)


@pytest.fixture
def redis_client():
    return FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture
def cache(redis_client):
    return AccountStateCache(redis_client, CacheConfig(namespace="test"))


@pytest.fixture
def mock_config():
    return MockConfig()


@pytest.fixture
def spot_client(mock_config):
    return MockSpotClient(mock_config)


@pytest.fixture
def futures_client(mock_config):
    return MockFuturesClient(mock_config)


@pytest.fixture
def client_factory(spot_client, futures_client):
    """Binance creators replaced by the shared mock clients."""
    factory = ClientFactory()
    factory.register(Exchange.BINANCE, Market.SPOT, lambda key, secret: spot_client)
    factory.register(Exchange.BINANCE, Market.FUTURES, lambda key, secret: futures_client)
    return factory


@pytest.fixture
def order_repository():
    return InMemoryOrderRepository()


@pytest.fixture
def broker_repository(order_repository):
    return InMemoryBrokerRepository(order_repository)


@pytest.fixture
def coordinator(broker_repository, order_repository, client_factory, cache, clock):
    return BrokerExecutionCoordinator(
        broker_repository=broker_repository,
        order_repository=order_repository,
        client_factory=client_factory,
        cache=cache,
        clock=clock,
    )
