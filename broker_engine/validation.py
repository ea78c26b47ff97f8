"""
Broker Engine - Order Tree Validation.

============================================================
PURPOSE
============================================================
Validates a submitted order tree before any I/O.

VALIDATION STEPS:
1. At least one group
2. Every group has a market and symbol
3. Every batch (primary and sub-list) is non-empty
4. Every leg has a positive quantity and exactly the prices
   its type needs
5. Order ids are unique within the submission

============================================================
"""

import logging
from decimal import Decimal
from typing import List, Optional, Set

from .types import (
    Market,
    OrderGroup,
    OrderIntent,
    ValidationError,
)


logger = logging.getLogger(__name__)


def validate_intent(intent: OrderIntent, location: str) -> None:
    """
    Validate a single leg.

    Raises:
        ValidationError: If the leg is malformed
    """
    if not intent.order_id:
        raise ValidationError(f"{location}: orderId is required")

    if intent.quantity is None or intent.quantity <= 0:
        raise ValidationError(f"{location}: quantity must be positive")

    order_type = intent.order_type

    if order_type.requires_price:
        if intent.price is None:
            raise ValidationError(f"{location}: {order_type.value} requires a price")
    elif intent.price is not None:
        raise ValidationError(f"{location}: {order_type.value} does not take a price")

    if order_type.requires_stop_price:
        if intent.stop_price is None:
            raise ValidationError(f"{location}: {order_type.value} requires a stop price")
    elif intent.stop_price is not None:
        raise ValidationError(f"{location}: {order_type.value} does not take a stop price")

    for name, value in (("price", intent.price), ("stopPrice", intent.stop_price)):
        if value is not None and value <= Decimal("0"):
            raise ValidationError(f"{location}: {name} must be positive")


def _validate_batch(
    batch: List[OrderIntent],
    location: str,
    seen_ids: Set[str],
) -> None:
    if not batch:
        raise ValidationError(f"{location}: batch must not be empty")

    for index, intent in enumerate(batch):
        leg_location = f"{location}[{index}]"
        validate_intent(intent, leg_location)
        if intent.order_id in seen_ids:
            raise ValidationError(f"{leg_location}: duplicate orderId {intent.order_id}")
        seen_ids.add(intent.order_id)


def validate_order_groups(order_groups: Optional[List[OrderGroup]]) -> None:
    """
    Validate an order submission.

    Args:
        order_groups: Submitted groups

    Raises:
        ValidationError: On the first structural problem found
    """
    if not order_groups:
        raise ValidationError("Order list must contain at least one group")

    seen_ids: Set[str] = set()

    for group_index, group in enumerate(order_groups):
        location = f"orderList[{group_index}]"

        if not isinstance(group.market, Market):
            raise ValidationError(f"{location}: unsupported market {group.market!r}")
        if not group.symbol:
            raise ValidationError(f"{location}: symbol is required")

        _validate_batch(group.batch_orders, f"{location}.batchOrders", seen_ids)

        for sub_index, sub_list in enumerate(group.sub_order_lists):
            _validate_batch(
                sub_list.batch_orders,
                f"{location}.subOrderList[{sub_index}].batchOrders",
                seen_ids,
            )

    logger.debug(
        f"Validated order list: {len(order_groups)} groups, "
        f"{sum(g.leg_count for g in order_groups)} legs"
    )
