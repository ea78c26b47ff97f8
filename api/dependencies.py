"""
FastAPI dependencies for the Broker API.

Process-wide resources (database engine, session factory,
Redis client, client factory) live on `app.state` and are
created by the application lifespan.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from broker_engine.cache import AccountStateCache
from broker_engine.clients.factory import ClientFactory
from broker_engine.coordinator import BrokerExecutionCoordinator
from broker_engine.repository import BrokerRepository, OrderRepository
from database.engine import session_scope


# =============================================================
# IDENTITY
# =============================================================

def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, supplied by the upstream gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


# =============================================================
# RESOURCES
# =============================================================

async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async for session in session_scope(request.app.state.session_factory):
        yield session


def get_cache(request: Request) -> AccountStateCache:
    return AccountStateCache(request.app.state.redis, request.app.state.config.cache)


def get_client_factory(request: Request) -> ClientFactory:
    return request.app.state.client_factory


def get_coordinator(
    session: AsyncSession = Depends(get_session),
    cache: AccountStateCache = Depends(get_cache),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> BrokerExecutionCoordinator:
    return BrokerExecutionCoordinator(
        broker_repository=BrokerRepository(session),
        order_repository=OrderRepository(session),
        client_factory=client_factory,
        cache=cache,
    )
