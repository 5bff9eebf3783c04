"""Inventory adjuster: order-level decrement and compensating restore."""

import uuid
from datetime import timedelta

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import NotFoundError
from services.orders_service.models import Order
from services.orders_service.services.catalog import adjust_variant_inventory
from services.orders_service.services.lifecycle import INVENTORY_COMMITTED_STATUSES
from services.orders_service.services.locking import lock_order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

DEFAULT_SWEEP_GRACE = timedelta(minutes=10)


# ---------------------------------------------------------------------------
# Decrement
# ---------------------------------------------------------------------------


async def decrement_order_inventory(db: AsyncSession, order_id: uuid.UUID) -> bool:
    """Remove ordered quantities from stock, once per order.

    Returns True when stock was adjusted. Replays, draft orders and orders
    cancelled before the job ran are no-ops.
    """
    try:
        order = await lock_order(db, order_id)
    except NotFoundError:
        logger.warning("Inventory decrement: order %s not found", order_id)
        return False

    if order.inventory_decremented_at is not None:
        logger.info("Inventory already decremented for order %s", order.order_number)
        await db.commit()
        return False
    if order.status not in INVENTORY_COMMITTED_STATUSES:
        logger.info(
            "Skipping inventory decrement for order %s in status %s",
            order.order_number,
            order.status.value,
        )
        await db.commit()
        return False

    for item in order.items:
        if item.variant_id is None:
            continue
        applied = await adjust_variant_inventory(db, item.variant_id, -item.quantity)
        item.inventory_deducted = -applied

    order.inventory_decremented_at = utc_now()
    await db.commit()

    logger.info("Decremented inventory for order %s", order.order_number)
    return True


# ---------------------------------------------------------------------------
# Restore (compensating)
# ---------------------------------------------------------------------------


async def restore_order_inventory(db: AsyncSession, order: Order) -> bool:
    """Give back exactly what the decrement removed.

    Expects ``order`` to be locked by the caller; does not commit.
    """
    if order.inventory_decremented_at is None or order.inventory_restored_at is not None:
        return False

    for item in order.items:
        if item.variant_id is None or item.inventory_deducted <= 0:
            continue
        await adjust_variant_inventory(db, item.variant_id, item.inventory_deducted)

    order.inventory_restored_at = utc_now()
    logger.info("Restored inventory for order %s", order.order_number)
    return True


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


async def reconcile_pending_inventory(
    db: AsyncSession, *, grace: timedelta = DEFAULT_SWEEP_GRACE
) -> int:
    """Decrement orders whose scheduled decrement never ran.

    Covers crashes or queue outages between committing the confirmation and
    running the job. Returns the number of orders adjusted.
    """
    cutoff = utc_now() - grace
    result = await db.execute(
        select(Order.id).where(
            Order.status.in_(list(INVENTORY_COMMITTED_STATUSES)),
            Order.inventory_decremented_at.is_(None),
            Order.updated_at < cutoff,
        )
    )
    order_ids = list(result.scalars())

    adjusted = 0
    for order_id in order_ids:
        if await decrement_order_inventory(db, order_id):
            adjusted += 1

    if adjusted:
        logger.warning("Inventory sweep decremented %d stale orders", adjusted)
    return adjusted
