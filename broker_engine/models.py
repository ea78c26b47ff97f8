"""
Broker Engine - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for broker and order persistence.

TABLES:
- brokers: Exchange credentials attached by users
- orders: Flattened order legs, cascaded with their broker

CONSTRAINTS:
- Label unique per user
- (api_key, api_secret) unique across all users

============================================================
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String,
    Numeric,
    DateTime,
    Boolean,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from database.engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ============================================================
# BROKER MODEL
# ============================================================

class BrokerModel(Base):
    """
    Persisted broker.

    Credentials are only written after the exchange confirmed the
    key's permissions.
    """

    __tablename__ = "brokers"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    exchange: Mapped[str] = mapped_column(String(16), nullable=False)
    label: Mapped[str] = mapped_column(String(128), nullable=False)
    api_key: Mapped[str] = mapped_column(Text, nullable=False)
    api_secret: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String(8), nullable=False)
    ip_restricted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    credentials_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False,
    )

    orders: Mapped[List["OrderModel"]] = relationship(
        "OrderModel",
        back_populates="broker",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "label", name="broker_user_label_unique"),
        UniqueConstraint("api_key", "api_secret", name="broker_api_key_api_secret_unique"),
    )


# ============================================================
# ORDER MODEL
# ============================================================

class OrderModel(Base):
    """
    Persisted order leg.

    The primary key is the client-assigned order id, which is also
    the exchange client order id of the submitted leg.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    parent_order_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    exchange_order_id: Mapped[Optional[str]] = mapped_column(String(64))

    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    market: Mapped[str] = mapped_column(String(16), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    quantity: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    stop_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False,
    )

    broker_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("brokers.id", ondelete="CASCADE"), nullable=False,
    )
    broker: Mapped["BrokerModel"] = relationship("BrokerModel", back_populates="orders")

    __table_args__ = (
        Index("ix_orders_broker_created", "broker_id", "created_at"),
    )
