"""
FastAPI Router for Broker Endpoints.

Provides REST API for:
- Broker registration and management
- Order list submission and order history
- Cached account views (holdings, positions, open orders,
  balance history)

Engine exceptions are mapped to HTTP status codes here:
ValidationError/CredentialError -> 400, NotFoundError -> 404,
UpstreamError -> 502. Orders the exchange accepted but that
could not be recorded, and other database failures, are 500.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from broker_engine.coordinator import BrokerExecutionCoordinator
from broker_engine.snapshots import DailyBalance, Holding, OpenOrder, Position
from broker_engine.types import (
    BrokerEngineError,
    CredentialError,
    Market,
    NotFoundError,
    UnrecordedOrderError,
    UpstreamError,
    ValidationError,
)
from database.engine import DatabasePersistenceError
from api.dependencies import get_coordinator, get_user_id
from api.schemas import (
    BrokerCreate,
    BrokerResponse,
    BrokerUpdate,
    OrderGroupSchema,
    OrderResponse,
    to_order_groups,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Brokers"])


# =============================================================
# HELPER: Error mapping
# =============================================================

_HANDLED_ERRORS = (BrokerEngineError, DatabasePersistenceError)


def _http_error(error: Exception) -> HTTPException:
    if isinstance(error, (ValidationError, CredentialError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, UpstreamError):
        logger.error(f"Upstream failure: {error} (code={error.code})")
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, UnrecordedOrderError):
        return HTTPException(status_code=500, detail=str(error))
    if isinstance(error, DatabasePersistenceError):
        logger.error(f"Database failure: {error}")
        return HTTPException(status_code=500, detail="Database operation failed")
    return HTTPException(status_code=500, detail=str(error))


# =============================================================
# BROKER ENDPOINTS
# =============================================================

@router.post("/brokers", response_model=BrokerResponse, status_code=status.HTTP_201_CREATED)
async def create_broker(
    body: BrokerCreate,
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    """
    Attach exchange credentials.

    The key must allow reading, spot and futures trading, and must
    not be enrolled in portfolio margin.
    """
    try:
        broker = await coordinator.register_broker(
            user_id, body.exchange, body.label, body.api_key, body.api_secret,
        )
    except _HANDLED_ERRORS as e:
        raise _http_error(e)
    return BrokerResponse.from_broker(broker)


@router.get("/brokers", response_model=List[BrokerResponse])
async def list_brokers(
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    try:
        brokers = await coordinator.list_brokers(user_id)
    except _HANDLED_ERRORS as e:
        raise _http_error(e)
    return [BrokerResponse.from_broker(b) for b in brokers]


@router.get("/brokers/{broker_id}", response_model=BrokerResponse)
async def get_broker(
    broker_id: str,
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    try:
        broker = await coordinator.get_broker(user_id, broker_id)
    except _HANDLED_ERRORS as e:
        raise _http_error(e)
    return BrokerResponse.from_broker(broker)


@router.put("/brokers/{broker_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_broker(
    broker_id: str,
    body: BrokerUpdate,
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    """Relabel a broker or rotate its credentials."""
    try:
        await coordinator.update_broker(
            user_id, broker_id, body.exchange, body.label, body.api_key, body.api_secret,
        )
    except _HANDLED_ERRORS as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/brokers/{broker_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_broker(
    broker_id: str,
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    """Delete a broker together with its orders."""
    try:
        await coordinator.delete_broker(user_id, broker_id)
    except _HANDLED_ERRORS as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================
# ORDER ENDPOINTS
# =============================================================

@router.get("/orders/{broker_id}", response_model=List[OrderResponse])
async def list_orders(
    broker_id: str,
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    try:
        records = await coordinator.list_orders(user_id, broker_id)
    except _HANDLED_ERRORS as e:
        raise _http_error(e)
    return [OrderResponse.from_record(r) for r in records]


@router.post(
    "/brokers/{broker_id}/order-list",
    response_model=List[OrderResponse],
    status_code=status.HTTP_201_CREATED,
)
async def submit_order_list(
    broker_id: str,
    body: List[OrderGroupSchema],
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    """
    Submit an order list.

    The first leg of the first group is sent to the exchange; every
    leg of the list is recorded.
    """
    try:
        records = await coordinator.submit_order_groups(
            user_id, broker_id, to_order_groups(body),
        )
    except _HANDLED_ERRORS as e:
        raise _http_error(e)
    return [OrderResponse.from_record(r) for r in records]


# =============================================================
# ACCOUNT VIEW ENDPOINTS
# =============================================================

@router.get("/brokers/{broker_id}/holdings", response_model=List[Holding])
async def get_holdings(
    broker_id: str,
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    try:
        return await coordinator.get_holdings(user_id, broker_id)
    except _HANDLED_ERRORS as e:
        raise _http_error(e)


@router.get("/brokers/{broker_id}/positions", response_model=List[Position])
async def get_positions(
    broker_id: str,
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    try:
        return await coordinator.get_positions(user_id, broker_id)
    except _HANDLED_ERRORS as e:
        raise _http_error(e)


@router.get(
    "/brokers/{broker_id}/open-orders/{market}",
    response_model=List[OpenOrder],
    response_model_exclude_none=True,
)
async def get_open_orders(
    broker_id: str,
    market: str,
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    try:
        market_enum = Market(market)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid market: {market}. Valid values: spot, futures")

    try:
        return await coordinator.get_open_orders(user_id, broker_id, market_enum)
    except _HANDLED_ERRORS as e:
        raise _http_error(e)


@router.get("/brokers/{broker_id}/balance", response_model=List[DailyBalance])
async def get_balance_history(
    broker_id: str,
    days: int = Query(7, description="Number of days, newest is today (UTC)"),
    user_id: str = Depends(get_user_id),
    coordinator: BrokerExecutionCoordinator = Depends(get_coordinator),
):
    try:
        return await coordinator.get_balance_history(user_id, broker_id, days)
    except _HANDLED_ERRORS as e:
        raise _http_error(e)
