"""Business ownership checks for order operations."""

import uuid

from libs.auth.models import AuthUser
from services.orders_service.errors import AuthorizationError, NotFoundError
from services.orders_service.models import Business, Order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def require_business_ownership(
    db: AsyncSession, actor: AuthUser, business_id: uuid.UUID
) -> Business:
    """Fail closed unless ``actor`` owns the business or is an internal service."""
    business = await db.get(Business, business_id)
    if business is None:
        raise NotFoundError("Business not found")
    if actor.is_service:
        return business
    if business.owner_auth_id != actor.user_id:
        raise AuthorizationError("Not authorized to access this business")
    return business


async def require_order_access(
    db: AsyncSession, actor: AuthUser, order_id: uuid.UUID
) -> uuid.UUID:
    """Check ownership using only the order's business id.

    Returns the business id. Mutable order state is read afterwards, under lock.
    """
    result = await db.execute(select(Order.business_id).where(Order.id == order_id))
    business_id = result.scalar_one_or_none()
    if business_id is None:
        raise NotFoundError("Order not found")
    await require_business_ownership(db, actor, business_id)
    return business_id
