"""Staff fulfillment actions: confirm, prepare, ready, deliver, cancel."""

import uuid
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.task_queue import TaskQueue
from services.orders_service.errors import InvalidStateError
from services.orders_service.models import Order, OrderStatus, PaymentMethod
from services.orders_service.services.access import require_order_access
from services.orders_service.services.inventory import restore_order_inventory
from services.orders_service.services.lifecycle import (
    SETTLED_STATUSES,
    payment_link_active,
    transition,
)
from services.orders_service.services.locking import lock_order
from services.orders_service.services.orders import set_payment_method
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def _advance(
    db: AsyncSession,
    actor: AuthUser,
    order_id: uuid.UUID,
    target: OrderStatus,
    message: str,
) -> Order:
    await require_order_access(db, actor, order_id)
    order = await lock_order(db, order_id)
    previous = order.status
    transition(order, target, message)
    await db.commit()
    logger.info(
        "Order %s moved %s -> %s", order.order_number, previous.value, target.value
    )
    return order


async def confirm_order(
    db: AsyncSession,
    *,
    actor: AuthUser,
    order_id: uuid.UUID,
    task_queue: TaskQueue,
) -> Order:
    """Staff confirmation of a draft order, settled in cash on handover."""
    return await set_payment_method(
        db,
        actor=actor,
        order_id=order_id,
        method=PaymentMethod.CASH,
        task_queue=task_queue,
    )


async def mark_preparing(db: AsyncSession, *, actor: AuthUser, order_id: uuid.UUID) -> Order:
    return await _advance(
        db,
        actor,
        order_id,
        OrderStatus.PREPARING,
        "Order must be confirmed or paid to start preparing",
    )


async def mark_ready(db: AsyncSession, *, actor: AuthUser, order_id: uuid.UUID) -> Order:
    return await _advance(
        db, actor, order_id, OrderStatus.READY, "Order must be preparing to mark as ready"
    )


async def mark_delivered(db: AsyncSession, *, actor: AuthUser, order_id: uuid.UUID) -> Order:
    return await _advance(
        db,
        actor,
        order_id,
        OrderStatus.DELIVERED,
        "Order must be ready to mark as delivered",
    )


async def cancel_order(
    db: AsyncSession,
    *,
    actor: AuthUser,
    order_id: uuid.UUID,
    reason: Optional[str] = None,
) -> Order:
    """Cancel a draft or confirmed order, restoring any decremented stock.

    Paid-or-later orders need a refund first and are rejected.
    """
    await require_order_access(db, actor, order_id)
    order = await lock_order(db, order_id)

    if order.status == OrderStatus.CANCELLED:
        raise InvalidStateError("Order already processed")
    if order.status in SETTLED_STATUSES:
        raise InvalidStateError("Order already paid, requires manual refund")

    now = utc_now()
    transition(order, OrderStatus.CANCELLED)
    order.cancelled_at = now
    order.cancellation_reason = reason

    # An unpaid link must not be payable after cancellation
    if payment_link_active(order, now):
        order.payment_link_expires_at = now

    await restore_order_inventory(db, order)
    await db.commit()

    logger.info(
        "Order %s cancelled%s",
        order.order_number,
        f" ({reason})" if reason else "",
    )
    return order
