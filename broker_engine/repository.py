"""
Broker Engine - Repository.

============================================================
PURPOSE
============================================================
Database operations for brokers and orders.

RESPONSIBILITIES:
- Save/load/delete brokers scoped to their owning user
- Bulk insert flattened order records
- Query orders by broker

Each public method commits its own transaction. Broker
constraint violations surface as ValidationError. Order
insert conflicts and other database failures surface as
DatabasePersistenceError.

============================================================
"""

import logging
from typing import Optional, List

from sqlalchemy import select, delete, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.engine import DatabasePersistenceError

from .models import BrokerModel, OrderModel
from .types import (
    Broker,
    BrokerStatus,
    Exchange,
    Market,
    OrderRecord,
    OrderSide,
    OrderStatus,
    OrderType,
    ValidationError,
)


logger = logging.getLogger(__name__)


class _SessionRepository:

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: SQLAlchemy async session
        """
        self._session = session

    async def _commit(self, action: str) -> None:
        try:
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            logger.warning(f"Constraint violation during {action}: {e.orig}")
            raise self._conflict_error(action, e) from e
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(f"Database error during {action}, rolled back: {e}")
            raise DatabasePersistenceError(f"{action} failed: {e}") from e

    def _conflict_error(self, action: str, error: IntegrityError) -> Exception:
        return ValidationError(f"Conflicting {action}: {_constraint_message(error)}")


def _constraint_message(error: IntegrityError) -> str:
    text = str(error.orig)
    # PostgreSQL names the constraint, SQLite names the columns
    if "broker_api_key_api_secret_unique" in text or "brokers.api_key" in text:
        return "credentials are already registered"
    if "broker_user_label_unique" in text or "brokers.label" in text:
        return "label is already in use"
    return "record already exists"


# ============================================================
# BROKER REPOSITORY
# ============================================================

class BrokerRepository(_SessionRepository):
    """Repository for broker persistence."""

    async def add(self, broker: Broker) -> Broker:
        """Insert a new broker and return it with generated fields."""
        model = BrokerModel(
            user_id=broker.user_id,
            exchange=broker.exchange.value,
            label=broker.label,
            api_key=broker.api_key,
            api_secret=broker.api_secret,
            status=broker.status.value,
            ip_restricted=broker.ip_restricted,
            credentials_created_at=broker.credentials_created_at,
        )
        if broker.broker_id:
            model.id = broker.broker_id

        self._session.add(model)
        await self._commit("broker insert")
        return self._model_to_broker(model)

    async def get_model(self, broker_id: str, user_id: str) -> Optional[BrokerModel]:
        result = await self._session.execute(
            select(BrokerModel).where(
                BrokerModel.id == broker_id,
                BrokerModel.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, broker_id: str, user_id: str) -> Optional[Broker]:
        """Get a broker owned by the user."""
        model = await self.get_model(broker_id, user_id)
        if model:
            return self._model_to_broker(model)
        return None

    async def list_for_user(self, user_id: str) -> List[Broker]:
        result = await self._session.execute(
            select(BrokerModel)
            .where(BrokerModel.user_id == user_id)
            .order_by(BrokerModel.created_at)
        )
        return [self._model_to_broker(m) for m in result.scalars()]

    async def find_by_credentials(self, api_key: str, api_secret: str) -> Optional[Broker]:
        """Find the broker holding a credential pair, for any user."""
        result = await self._session.execute(
            select(BrokerModel).where(
                BrokerModel.api_key == api_key,
                BrokerModel.api_secret == api_secret,
            )
        )
        model = result.scalar_one_or_none()
        return self._model_to_broker(model) if model else None

    async def find_by_label(self, user_id: str, label: str) -> Optional[Broker]:
        result = await self._session.execute(
            select(BrokerModel).where(
                BrokerModel.user_id == user_id,
                BrokerModel.label == label,
            )
        )
        model = result.scalar_one_or_none()
        return self._model_to_broker(model) if model else None

    async def update(self, broker: Broker) -> Broker:
        """Replace credentials, validation results and label."""
        model = await self.get_model(broker.broker_id, broker.user_id)
        if model is None:
            raise DatabasePersistenceError(f"Broker {broker.broker_id} vanished during update")

        model.exchange = broker.exchange.value
        model.label = broker.label
        model.api_key = broker.api_key
        model.api_secret = broker.api_secret
        model.status = broker.status.value
        model.ip_restricted = broker.ip_restricted
        model.credentials_created_at = broker.credentials_created_at

        await self._commit("broker update")
        return self._model_to_broker(model)

    async def update_label(self, broker_id: str, user_id: str, label: str) -> Broker:
        """Change only the label."""
        model = await self.get_model(broker_id, user_id)
        if model is None:
            raise DatabasePersistenceError(f"Broker {broker_id} vanished during update")

        model.label = label
        await self._commit("broker label update")
        return self._model_to_broker(model)

    async def delete(self, broker_id: str, user_id: str) -> bool:
        """Delete a broker and its orders. Returns False if nothing matched."""
        model = await self.get_model(broker_id, user_id)
        if model is None:
            return False

        await self._session.execute(delete(OrderModel).where(OrderModel.broker_id == broker_id))
        await self._session.execute(delete(BrokerModel).where(BrokerModel.id == broker_id))
        await self._commit("broker delete")
        return True

    def _model_to_broker(self, model: BrokerModel) -> Broker:
        return Broker(
            broker_id=model.id,
            user_id=model.user_id,
            exchange=Exchange(model.exchange),
            label=model.label,
            api_key=model.api_key,
            api_secret=model.api_secret,
            status=BrokerStatus(model.status),
            ip_restricted=model.ip_restricted,
            credentials_created_at=model.credentials_created_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# ============================================================
# ORDER REPOSITORY
# ============================================================

class OrderRepository(_SessionRepository):
    """Repository for order persistence."""

    def _conflict_error(self, action: str, error: IntegrityError) -> Exception:
        # Inserts happen after submission, so a conflict is not a request error
        return DatabasePersistenceError(f"Conflicting {action}: {_constraint_message(error)}")

    async def add_all(self, records: List[OrderRecord]) -> None:
        """Insert flattened records in one transaction."""
        self._session.add_all([self._record_to_model(r) for r in records])
        await self._commit("order insert")
        logger.info(f"Persisted {len(records)} order records")

    async def existing_ids(self, order_ids: List[str]) -> List[str]:
        """Return the subset of order ids that are already stored."""
        if not order_ids:
            return []
        result = await self._session.execute(
            select(OrderModel.id).where(OrderModel.id.in_(order_ids))
        )
        return list(result.scalars())

    async def list_for_broker(self, broker_id: str, limit: int = 500) -> List[OrderRecord]:
        result = await self._session.execute(
            select(OrderModel)
            .where(OrderModel.broker_id == broker_id)
            .order_by(desc(OrderModel.created_at))
            .limit(limit)
        )
        return [self._model_to_record(m) for m in result.scalars()]

    def _record_to_model(self, record: OrderRecord) -> OrderModel:
        model = OrderModel(
            id=record.order_id,
            parent_order_id=record.parent_order_id,
            exchange_order_id=record.exchange_order_id,
            symbol=record.symbol,
            market=record.market.value,
            side=record.side.value,
            type=record.order_type.value,
            price=record.price,
            quantity=record.quantity,
            stop_price=record.stop_price,
            status=record.status.value,
            broker_id=record.broker_id,
        )
        if record.created_at is not None:
            model.created_at = record.created_at
            model.updated_at = record.updated_at or record.created_at
        return model

    def _model_to_record(self, model: OrderModel) -> OrderRecord:
        return OrderRecord(
            order_id=model.id,
            broker_id=model.broker_id,
            market=Market(model.market),
            symbol=model.symbol,
            side=OrderSide(model.side),
            order_type=OrderType(model.type),
            quantity=model.quantity,
            price=model.price,
            stop_price=model.stop_price,
            parent_order_id=model.parent_order_id,
            exchange_order_id=model.exchange_order_id,
            status=OrderStatus(model.status),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
