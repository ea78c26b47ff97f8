"""
Pydantic models for cached account views.

These are derived from live exchange data, stored as JSON in
the account state cache, and never persisted relationally.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, TypeAdapter
from pydantic.alias_generators import to_camel


class SnapshotModel(BaseModel):
    """Snake case in the cache, camel case at the HTTP boundary."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Holding(SnapshotModel):
    symbol: str
    amount: float


class Position(SnapshotModel):
    symbol: str
    position_side: Literal["both", "long", "short"]
    quantity: float
    liquidation_price: float
    unrealized_pnl: float
    amount: float  # notional
    entry_price: float
    mark_price: float
    updated_at: datetime


class OpenOrder(SnapshotModel):
    order_id: str
    symbol: str
    side: Literal["buy", "sell"]
    position_side: Optional[Literal["both", "long", "short"]] = None
    type: str
    price: Optional[float] = None
    stop_price: Optional[float] = None
    quantity: float
    filled_quantity: float
    status: str
    created_at: datetime
    updated_at: datetime


class WalletBalance(SnapshotModel):
    account: Literal["spot", "futures"]
    balance: float


class DailyBalance(SnapshotModel):
    date: str
    balance: Optional[List[WalletBalance]] = None


HOLDINGS = TypeAdapter(List[Holding])
POSITIONS = TypeAdapter(List[Position])
OPEN_ORDERS = TypeAdapter(List[OpenOrder])
WALLET_BALANCES = TypeAdapter(List[WalletBalance])
