"""
Broker Engine - Order Tree Flattener.

============================================================
PURPOSE
============================================================
Convert a submitted order tree into persistable order
records.

TRAVERSAL:
    for each group:
        primary batch, in order
        each sub-list, in order, each leg in order

Only the first leg of the submitted (first) group reflects
the exchange response. Every other leg is a companion leg
recorded as pending.

============================================================
"""

from datetime import datetime
from typing import List, Optional

from .clients.base import SubmitOrderResponse
from .types import OrderGroup, OrderIntent, OrderRecord, OrderStatus


def _to_record(
    group: OrderGroup,
    intent: OrderIntent,
    broker_id: str,
    created_at: Optional[datetime],
) -> OrderRecord:
    return OrderRecord(
        order_id=intent.order_id,
        broker_id=broker_id,
        market=group.market,
        symbol=group.symbol,
        side=intent.side,
        order_type=intent.order_type,
        quantity=intent.quantity,
        price=intent.price,
        stop_price=intent.stop_price,
        parent_order_id=intent.parent_order_id,
        created_at=created_at,
        updated_at=created_at,
    )


def flatten(
    order_groups: List[OrderGroup],
    submission: SubmitOrderResponse,
    broker_id: str,
    created_at: Optional[datetime] = None,
) -> List[OrderRecord]:
    """
    Flatten order groups into records.

    Args:
        order_groups: Submitted groups (already validated)
        submission: Exchange response for the first leg of the first group
        broker_id: Owning broker
        created_at: Timestamp stamped on every record

    Returns:
        One record per leg, in traversal order
    """
    records: List[OrderRecord] = []

    for group_index, group in enumerate(order_groups):
        for leg_index, intent in enumerate(group.iter_legs()):
            record = _to_record(group, intent, broker_id, created_at)

            if group_index == 0 and leg_index == 0:
                record.exchange_order_id = submission.exchange_order_id
                if submission.is_filled:
                    record.status = OrderStatus.FILLED

            records.append(record)

    return records
