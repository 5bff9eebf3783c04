"""Row locks that serialise concurrent mutations of one record."""

import uuid

from services.orders_service.errors import NotFoundError
from services.orders_service.models import Order, ProductVariant
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def lock_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    """SELECT ... FOR UPDATE the order and refresh any identity-map copy."""
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order not found")
    return order


async def lock_variant(db: AsyncSession, variant_id: uuid.UUID) -> ProductVariant | None:
    result = await db.execute(
        select(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
