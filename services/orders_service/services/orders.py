"""Order aggregate operations: create, line items, delivery, payment method, reads.

Every mutating operation checks ownership, locks the order row, validates
against the state machine, mutates, and commits once. Side effects that
reach other systems are enqueued only after the commit.
"""

import uuid
from typing import Optional, Sequence

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.task_queue import TaskQueue
from services.orders_service.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from services.orders_service.models import (
    DeliveryType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
)
from services.orders_service.payments.base import PaymentRequest
from services.orders_service.payments.orchestrator import (
    apply_payment_artifact,
    expire_stale_link,
    get_marketplace_connection,
)
from services.orders_service.payments.providers import CashProvider
from services.orders_service.scheduling import (
    schedule_inventory_decrement,
    schedule_marketplace_order,
)
from services.orders_service.schemas import OrderItemInput
from services.orders_service.services.access import (
    require_business_ownership,
    require_order_access,
)
from services.orders_service.services.catalog import LineSnapshot, resolve_line
from services.orders_service.services.lifecycle import (
    ensure_delivery_mutable,
    ensure_items_mutable,
    payment_link_active,
    recompute_totals,
    transition,
)
from services.orders_service.services.locking import lock_order
from services.orders_service.services.order_numbers import allocate_order_number
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def _item_from_snapshot(snapshot: LineSnapshot, quantity: int, position: int) -> OrderItem:
    return OrderItem(
        position=position,
        product_id=snapshot.product_id,
        variant_id=snapshot.variant_id,
        product_name=snapshot.product_name,
        variant_name=snapshot.variant_name,
        sku=snapshot.sku,
        external_variant_id=snapshot.external_variant_id,
        quantity=quantity,
        unit_price=snapshot.unit_price,
        total_price=snapshot.unit_price * quantity,
    )


def _find_line(
    order: Order, product_id: uuid.UUID, variant_id: Optional[uuid.UUID]
) -> Optional[OrderItem]:
    for item in order.items:
        if item.product_id == product_id and item.variant_id == variant_id:
            return item
    return None


def _next_position(order: Order) -> int:
    return max((item.position for item in order.items), default=-1) + 1


async def _load_for_update(
    db: AsyncSession, actor: AuthUser, order_id: uuid.UUID
) -> Order:
    await require_order_access(db, actor, order_id)
    return await lock_order(db, order_id)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_order(
    db: AsyncSession,
    *,
    actor: AuthUser,
    business_id: uuid.UUID,
    conversation_id: str,
    contact_phone: str,
    items: Sequence[OrderItemInput] = (),
    contact_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    """Create a draft order with snapshotted line items."""
    business = await require_business_ownership(db, actor, business_id)
    business_name = business.name
    default_currency = business.default_currency or get_settings().DEFAULT_CURRENCY

    # Resolve everything before taking the counter lock
    snapshots: list[tuple[LineSnapshot, int]] = []
    for requested in items:
        snapshot = await resolve_line(
            db,
            business_id=business_id,
            product_id=requested.product_id,
            variant_id=requested.variant_id,
            quantity=requested.quantity,
        )
        snapshots.append((snapshot, requested.quantity))

    currency = snapshots[0][0].currency if snapshots else default_currency
    for snapshot, _ in snapshots:
        if snapshot.currency != currency:
            raise ValidationError("All items in an order must use the same currency")

    order_number = await allocate_order_number(
        db, business_id=business_id, business_name=business_name
    )

    order = Order(
        business_id=business_id,
        conversation_id=conversation_id,
        order_number=order_number,
        status=OrderStatus.DRAFT,
        contact_phone=contact_phone,
        contact_name=contact_name,
        notes=notes,
        currency=currency,
        delivery_type=DeliveryType.PICKUP,
        payment_method=PaymentMethod.CASH,
        delivery_fee=0,
        items=[],
    )
    for snapshot, quantity in snapshots:
        existing = _find_line(order, snapshot.product_id, snapshot.variant_id)
        if existing is not None:
            existing.quantity += quantity
            continue
        order.items.append(_item_from_snapshot(snapshot, quantity, _next_position(order)))

    recompute_totals(order)
    db.add(order)
    await db.commit()

    logger.info(
        "Created order %s for business %s (%d items, total=%d %s)",
        order.order_number,
        business_id,
        len(order.items),
        order.total,
        order.currency,
    )
    return order


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


async def add_item(
    db: AsyncSession,
    *,
    actor: AuthUser,
    order_id: uuid.UUID,
    product_id: uuid.UUID,
    variant_id: Optional[uuid.UUID] = None,
    quantity: int = 1,
) -> Order:
    """Add a line, merging into an existing line for the same product+variant."""
    order = await _load_for_update(db, actor, order_id)
    ensure_items_mutable(order)

    snapshot = await resolve_line(
        db,
        business_id=order.business_id,
        product_id=product_id,
        variant_id=variant_id,
        quantity=quantity,
    )
    if order.items and snapshot.currency != order.currency:
        raise ValidationError("All items in an order must use the same currency")
    if not order.items:
        order.currency = snapshot.currency

    existing = _find_line(order, product_id, variant_id)
    if existing is not None:
        existing.quantity += quantity
    else:
        order.items.append(_item_from_snapshot(snapshot, quantity, _next_position(order)))

    recompute_totals(order)
    await db.commit()
    return order


async def remove_item(
    db: AsyncSession,
    *,
    actor: AuthUser,
    order_id: uuid.UUID,
    product_id: uuid.UUID,
    variant_id: Optional[uuid.UUID] = None,
) -> Order:
    order = await _load_for_update(db, actor, order_id)
    ensure_items_mutable(order)

    line = _find_line(order, product_id, variant_id)
    if line is None:
        raise NotFoundError("Item not found in order")
    order.items.remove(line)

    recompute_totals(order)
    await db.commit()
    return order


async def update_item_quantity(
    db: AsyncSession,
    *,
    actor: AuthUser,
    order_id: uuid.UUID,
    product_id: uuid.UUID,
    variant_id: Optional[uuid.UUID] = None,
    quantity: int,
) -> Order:
    """Set a line's quantity; zero or less removes the line."""
    order = await _load_for_update(db, actor, order_id)
    ensure_items_mutable(order)

    line = _find_line(order, product_id, variant_id)
    if line is None:
        raise NotFoundError("Item not found in order")
    if quantity <= 0:
        order.items.remove(line)
    else:
        line.quantity = quantity

    recompute_totals(order)
    await db.commit()
    return order


# ---------------------------------------------------------------------------
# Delivery & payment method
# ---------------------------------------------------------------------------


async def set_delivery_info(
    db: AsyncSession,
    *,
    actor: AuthUser,
    order_id: uuid.UUID,
    delivery_type: DeliveryType,
    delivery_address: Optional[str] = None,
    delivery_notes: Optional[str] = None,
    contact_phone: Optional[str] = None,
    delivery_fee: Optional[int] = None,
) -> Order:
    order = await _load_for_update(db, actor, order_id)
    ensure_delivery_mutable(order)

    if delivery_type == DeliveryType.DELIVERY and not (delivery_address or "").strip():
        raise ValidationError("Delivery address is required for delivery orders")
    if delivery_fee is not None and delivery_fee < 0:
        raise ValidationError("Delivery fee cannot be negative")

    order.delivery_type = delivery_type
    order.delivery_notes = delivery_notes
    if delivery_type == DeliveryType.DELIVERY:
        order.delivery_address = delivery_address.strip()
        if delivery_fee is not None:
            order.delivery_fee = delivery_fee
    else:
        order.delivery_address = None
        order.delivery_fee = 0
    if contact_phone is not None:
        order.contact_phone = contact_phone

    recompute_totals(order)
    await db.commit()
    return order


async def set_payment_method(
    db: AsyncSession,
    *,
    actor: AuthUser,
    order_id: uuid.UUID,
    method: PaymentMethod,
    task_queue: TaskQueue,
) -> Order:
    """Record the payment method. Cash confirms the order immediately."""
    order = await _load_for_update(db, actor, order_id)
    if order.status != OrderStatus.DRAFT:
        raise InvalidStateError("Order must be draft to change payment method")

    if method == PaymentMethod.CARD:
        order.payment_method = PaymentMethod.CARD
        await db.commit()
        return order

    if not order.items:
        raise ValidationError("Order has no items")
    if order.delivery_type == DeliveryType.DELIVERY and not order.delivery_address:
        raise ValidationError("Delivery address is required for delivery orders")
    expire_stale_link(order)
    if payment_link_active(order):
        raise InvalidStateError("Order already has an active payment link")

    artifact = await CashProvider().create_payment_artifact(PaymentRequest.from_order(order))
    apply_payment_artifact(order, artifact)
    order.payment_method = PaymentMethod.CASH
    transition(order, OrderStatus.CONFIRMED, "Order must be draft to confirm")

    connection = await get_marketplace_connection(db, order.business_id)
    await db.commit()

    logger.info("Order %s confirmed for cash payment", order.order_number)

    await schedule_inventory_decrement(task_queue, order.id)
    if connection is not None:
        await schedule_marketplace_order(task_queue, order.id)
    return order


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_order(db: AsyncSession, *, actor: AuthUser, order_id: uuid.UUID) -> Order:
    await require_order_access(db, actor, order_id)
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


async def get_order_by_conversation(
    db: AsyncSession,
    *,
    actor: AuthUser,
    business_id: uuid.UUID,
    conversation_id: str,
) -> Order:
    """Most recent order for a conversation."""
    await require_business_ownership(db, actor, business_id)
    result = await db.execute(
        select(Order)
        .where(
            Order.business_id == business_id,
            Order.conversation_id == conversation_id,
        )
        .order_by(Order.created_at.desc())
        .limit(1)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("No order for this conversation")
    return order


async def get_order_by_number(
    db: AsyncSession,
    *,
    actor: AuthUser,
    business_id: uuid.UUID,
    order_number: str,
) -> Order:
    await require_business_ownership(db, actor, business_id)
    result = await db.execute(
        select(Order).where(
            Order.business_id == business_id,
            Order.order_number == order_number.strip().upper(),
        )
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order not found")
    return order


async def list_orders(
    db: AsyncSession,
    *,
    actor: AuthUser,
    business_id: uuid.UUID,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    """Newest first. Returns ``(orders, total)``."""
    await require_business_ownership(db, actor, business_id)
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    query = select(Order).where(Order.business_id == business_id)
    count_query = select(func.count(Order.id)).where(Order.business_id == business_id)
    if status is not None:
        query = query.where(Order.status == status)
        count_query = count_query.where(Order.status == status)

    total = (await db.execute(count_query)).scalar_one()
    result = await db.execute(
        query.order_by(Order.created_at.desc(), Order.order_number.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total
