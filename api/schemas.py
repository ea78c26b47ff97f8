"""
Pydantic Schemas for the Broker API.

Request bodies and responses use camelCase on the wire. Order
list payloads are converted into the engine's order tree
dataclasses; structural rules are enforced by the engine.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from broker_engine.clients.binance import mask_key
from broker_engine.types import (
    Broker,
    BrokerStatus,
    Exchange,
    Market,
    OrderGroup,
    OrderIntent,
    OrderRecord,
    OrderSide,
    OrderStatus,
    OrderType,
    SubOrderList,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================
# BROKERS
# =============================================================

class BrokerCreate(CamelModel):
    """Attach exchange credentials."""
    exchange: Exchange
    label: str = Field(..., min_length=1, max_length=128)
    api_key: str = Field(..., min_length=1)
    api_secret: str = Field(..., min_length=1)


class BrokerUpdate(BrokerCreate):
    """Same fields as creation; unchanged credentials only relabel."""
    pass


class BrokerResponse(CamelModel):
    """Broker as returned to its owner. The api secret is never included."""
    id: str
    exchange: Exchange
    label: str
    api_key: str  # masked
    status: BrokerStatus
    ip_restricted: bool
    credentials_created_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_broker(cls, broker: Broker) -> "BrokerResponse":
        return cls(
            id=broker.broker_id,
            exchange=broker.exchange,
            label=broker.label,
            api_key=mask_key(broker.api_key),
            status=broker.status,
            ip_restricted=broker.ip_restricted,
            credentials_created_at=broker.credentials_created_at,
            created_at=broker.created_at,
            updated_at=broker.updated_at,
        )


# =============================================================
# ORDER LIST
# =============================================================

class OrderParams(CamelModel):
    type: OrderType
    quantity: Decimal
    side: OrderSide
    price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None


class OrderSchema(CamelModel):
    order_id: str
    parent_order_id: Optional[str] = None
    order_params: OrderParams

    def to_intent(self) -> OrderIntent:
        params = self.order_params
        return OrderIntent(
            order_id=self.order_id,
            side=params.side,
            order_type=params.type,
            quantity=params.quantity,
            price=params.price,
            stop_price=params.stop_price,
            parent_order_id=self.parent_order_id,
        )


class SubOrderListSchema(CamelModel):
    batch_orders: List[OrderSchema]


class OrderGroupSchema(CamelModel):
    market: Market
    symbol: str
    batch_orders: List[OrderSchema]
    sub_order_list: List[SubOrderListSchema] = Field(default_factory=list)

    def to_group(self) -> OrderGroup:
        return OrderGroup(
            market=self.market,
            symbol=self.symbol,
            batch_orders=[order.to_intent() for order in self.batch_orders],
            sub_order_lists=[
                SubOrderList(batch_orders=[order.to_intent() for order in sub.batch_orders])
                for sub in self.sub_order_list
            ],
        )


def to_order_groups(payload: List[OrderGroupSchema]) -> List[OrderGroup]:
    return [group.to_group() for group in payload]


class OrderResponse(CamelModel):
    """Persisted order leg."""
    id: str
    broker_id: str
    parent_order_id: Optional[str] = None
    exchange_order_id: Optional[str] = None
    market: Market
    symbol: str
    side: OrderSide
    type: OrderType
    quantity: Decimal
    price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    status: OrderStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: OrderRecord) -> "OrderResponse":
        return cls(
            id=record.order_id,
            broker_id=record.broker_id,
            parent_order_id=record.parent_order_id,
            exchange_order_id=record.exchange_order_id,
            market=record.market,
            symbol=record.symbol,
            side=record.side,
            type=record.order_type,
            quantity=record.quantity,
            price=record.price,
            stop_price=record.stop_price,
            status=record.status,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
