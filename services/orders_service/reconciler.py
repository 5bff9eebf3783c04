"""Webhook reconciler: applies provider payment events to orders.

Every handler is guarded by the order's current state rather than by a
delivery counter, so replaying an event is a no-op. Signature checks happen
in the router before anything here runs.
"""

import re
import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.task_queue import TaskQueue
from services.orders_service.models import (
    MarketplaceConnection,
    Order,
    OrderStatus,
    PaymentProviderKind,
    PaymentStatus,
)
from services.orders_service.payments.orchestrator import get_marketplace_connection
from services.orders_service.scheduling import (
    schedule_inventory_decrement,
    schedule_marketplace_order,
    schedule_payment_confirmation,
)
from services.orders_service.services.lifecycle import payment_link_active, transition
from services.orders_service.services.locking import lock_order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

STRIPE_CHECKOUT_COMPLETED = "checkout.session.completed"
STRIPE_CHECKOUT_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
STRIPE_CHECKOUT_ASYNC_FAILED = "checkout.session.async_payment_failed"
STRIPE_CHECKOUT_EXPIRED = "checkout.session.expired"

SHOPIFY_ORDER_TOPICS = frozenset({"orders/paid", "orders/updated"})
SHOPIFY_PAID_STATUSES = frozenset({"paid", "partially_paid"})
SHOPIFY_REFUNDED_STATUSES = frozenset({"refunded", "voided"})

ORDER_NUMBER_TAG_RE = re.compile(r"^ORD-[A-Z]{3}-\d{6,}$")


@dataclass
class ReconcileOutcome:
    """What a webhook did. ``changed`` is False for replays and unknown orders."""

    action: str
    order_id: Optional[uuid.UUID] = None
    changed: bool = False


def _mark_paid(order: Order, provider: PaymentProviderKind) -> None:
    now = utc_now()
    transition(order, OrderStatus.PAID)
    order.payment_status = PaymentStatus.PAID
    order.payment_provider = provider
    order.paid_at = order.paid_at or now
    # The link is spent; it must not read as payable
    if payment_link_active(order, now):
        order.payment_link_expires_at = now


def _record_late_payment(order: Order) -> bool:
    """Money arrived for a cancelled order; keep the status, flag for refund."""
    logger.warning(
        "Payment received for cancelled order %s; manual refund required",
        order.order_number,
    )
    if order.payment_status == PaymentStatus.PAID:
        return False
    order.payment_status = PaymentStatus.PAID
    order.paid_at = order.paid_at or utc_now()
    return True


def _is_second_payment(order: Order, provider: PaymentProviderKind) -> bool:
    return order.payment_status == PaymentStatus.PAID and order.payment_provider != provider


def _record_second_payment(order: Order, provider: PaymentProviderKind, reference: str) -> None:
    """Another provider already settled this order; the new charge must be refunded."""
    logger.warning(
        "Order %s already paid via %s; %s payment %s requires manual refund",
        order.order_number,
        order.payment_provider.value if order.payment_provider else "unknown",
        provider.value,
        reference,
    )


# ============================================================================
# STRIPE
# ============================================================================


async def _order_id_for_session(db: AsyncSession, session_id: str) -> Optional[uuid.UUID]:
    result = await db.execute(select(Order.id).where(Order.stripe_session_id == session_id))
    return result.scalar_one_or_none()


async def _superseded_order(db: AsyncSession, order_id: Optional[str]) -> Optional[Order]:
    """Order named in session metadata whose current attempt is another session."""
    if not order_id:
        return None
    try:
        return await db.get(Order, uuid.UUID(order_id))
    except ValueError:
        return None


async def apply_checkout_completed(
    db: AsyncSession,
    *,
    session_id: str,
    task_queue: TaskQueue,
    metadata_order_id: Optional[str] = None,
) -> ReconcileOutcome:
    order_id = await _order_id_for_session(db, session_id)
    if order_id is None:
        superseded = await _superseded_order(db, metadata_order_id)
        if superseded is not None:
            logger.warning(
                "Superseded checkout session %s paid for order %s; manual refund required",
                session_id,
                superseded.order_number,
            )
            return ReconcileOutcome(action="superseded_payment", order_id=superseded.id)
        logger.info("Checkout session %s matches no order; ignoring", session_id)
        return ReconcileOutcome(action="ignored")

    order = await lock_order(db, order_id)

    if order.status == OrderStatus.CANCELLED:
        changed = _record_late_payment(order)
        await db.commit()
        return ReconcileOutcome(action="cancelled_order_paid", order_id=order.id, changed=changed)

    if _is_second_payment(order, PaymentProviderKind.STRIPE):
        _record_second_payment(order, PaymentProviderKind.STRIPE, session_id)
        await db.commit()
        return ReconcileOutcome(action="duplicate_payment", order_id=order.id)

    if order.status != OrderStatus.DRAFT:
        # Already paid (replay) or moved on by another path
        await db.commit()
        logger.info(
            "Checkout completed replay for order %s (status=%s)",
            order.order_number,
            order.status.value,
        )
        return ReconcileOutcome(action="already_processed", order_id=order.id)

    _mark_paid(order, PaymentProviderKind.STRIPE)
    needs_marketplace_order = not order.shopify_order_id
    connection = await get_marketplace_connection(db, order.business_id)
    await db.commit()

    logger.info("Order %s paid via Stripe session %s", order.order_number, session_id)

    await schedule_inventory_decrement(task_queue, order.id)
    if connection is not None and needs_marketplace_order:
        await schedule_marketplace_order(task_queue, order.id)
    await schedule_payment_confirmation(task_queue, order.id)
    return ReconcileOutcome(action="paid", order_id=order.id, changed=True)


async def apply_checkout_failed(db: AsyncSession, *, session_id: str) -> ReconcileOutcome:
    """Session expired or async payment failed: the attempt fails, status stays."""
    order_id = await _order_id_for_session(db, session_id)
    if order_id is None:
        return ReconcileOutcome(action="ignored")

    order = await lock_order(db, order_id)
    if order.payment_status != PaymentStatus.PENDING:
        await db.commit()
        return ReconcileOutcome(action="already_processed", order_id=order.id)

    order.payment_status = PaymentStatus.FAILED
    order.payment_link_expires_at = utc_now()
    order.updated_at = utc_now()
    await db.commit()

    logger.info("Payment attempt failed for order %s (session %s)", order.order_number, session_id)
    return ReconcileOutcome(action="payment_failed", order_id=order.id, changed=True)


async def handle_stripe_event(
    db: AsyncSession, event: dict, task_queue: TaskQueue
) -> ReconcileOutcome:
    event_type = event.get("type")
    session = (event.get("data") or {}).get("object") or {}
    session_id = session.get("id")
    if not session_id:
        return ReconcileOutcome(action="ignored")
    metadata_order_id = (session.get("metadata") or {}).get("orderId")

    if event_type == STRIPE_CHECKOUT_COMPLETED:
        # Delayed methods complete as "unpaid" and settle via async_payment_succeeded
        if session.get("payment_status") == "unpaid":
            return ReconcileOutcome(action="awaiting_payment")
        return await apply_checkout_completed(
            db,
            session_id=session_id,
            task_queue=task_queue,
            metadata_order_id=metadata_order_id,
        )
    if event_type == STRIPE_CHECKOUT_ASYNC_SUCCEEDED:
        return await apply_checkout_completed(
            db,
            session_id=session_id,
            task_queue=task_queue,
            metadata_order_id=metadata_order_id,
        )
    if event_type in (STRIPE_CHECKOUT_EXPIRED, STRIPE_CHECKOUT_ASYNC_FAILED):
        return await apply_checkout_failed(db, session_id=session_id)

    logger.debug("Ignoring Stripe event %s", event_type)
    return ReconcileOutcome(action="ignored")


# ============================================================================
# SHOPIFY
# ============================================================================


def order_number_from_tags(tags: Optional[str]) -> Optional[str]:
    """Find our order number among comma-separated Shopify tags."""
    for tag in (tags or "").split(","):
        candidate = tag.strip()
        if ORDER_NUMBER_TAG_RE.match(candidate):
            return candidate
    return None


async def get_connection_by_shop(
    db: AsyncSession, shop_domain: str
) -> Optional[MarketplaceConnection]:
    result = await db.execute(
        select(MarketplaceConnection).where(
            MarketplaceConnection.shop_domain == shop_domain.strip().lower()
        )
    )
    return result.scalar_one_or_none()


async def resolve_marketplace_order(
    db: AsyncSession,
    *,
    business_id: uuid.UUID,
    draft_order_id: Optional[str],
    tags: Optional[str],
) -> Optional[uuid.UUID]:
    """Join on draft order id, else on an order-number tag, within one business."""
    if draft_order_id:
        result = await db.execute(
            select(Order.id).where(
                Order.business_id == business_id,
                Order.shopify_draft_order_id == draft_order_id,
            )
        )
        order_id = result.scalar_one_or_none()
        if order_id is not None:
            return order_id

    order_number = order_number_from_tags(tags)
    if order_number is None:
        return None
    result = await db.execute(
        select(Order.id).where(
            Order.business_id == business_id,
            Order.order_number == order_number,
        )
    )
    return result.scalar_one_or_none()


def _record_marketplace_ids(order: Order, shopify_order_id: str, name: Optional[str]) -> bool:
    if order.shopify_order_id == shopify_order_id:
        return False
    order.shopify_order_id = shopify_order_id
    if name:
        order.shopify_order_number = name
    order.updated_at = utc_now()
    return True


async def handle_shopify_order_event(
    db: AsyncSession,
    *,
    shop_domain: str,
    topic: str,
    payload: dict,
    task_queue: TaskQueue,
) -> ReconcileOutcome:
    if topic not in SHOPIFY_ORDER_TOPICS:
        logger.debug("Ignoring Shopify topic %s", topic)
        return ReconcileOutcome(action="ignored")

    if not payload.get("id"):
        logger.error("Invalid Shopify order payload for %s from %s", topic, shop_domain)
        return ReconcileOutcome(action="ignored")

    financial_status = payload.get("financial_status")
    if financial_status not in SHOPIFY_PAID_STATUSES | SHOPIFY_REFUNDED_STATUSES:
        return ReconcileOutcome(action="ignored")

    connection = await get_connection_by_shop(db, shop_domain)
    if connection is None:
        logger.warning("Shopify webhook from unknown shop %s", shop_domain)
        return ReconcileOutcome(action="ignored")

    draft_order_id = payload.get("draft_order_id")
    order_id = await resolve_marketplace_order(
        db,
        business_id=connection.business_id,
        draft_order_id=str(draft_order_id) if draft_order_id else None,
        tags=payload.get("tags"),
    )
    if order_id is None:
        logger.info(
            "Shopify order %s from %s matches no order; dropping", payload.get("id"), shop_domain
        )
        return ReconcileOutcome(action="ignored")

    shopify_order_id = str(payload["id"])
    shopify_order_name = payload.get("name")
    order = await lock_order(db, order_id)

    if financial_status in SHOPIFY_REFUNDED_STATUSES:
        if order.payment_status == PaymentStatus.REFUNDED:
            await db.commit()
            return ReconcileOutcome(action="already_processed", order_id=order.id)
        order.payment_status = PaymentStatus.REFUNDED
        order.updated_at = utc_now()
        await db.commit()
        logger.info("Order %s marked refunded (%s)", order.order_number, financial_status)
        return ReconcileOutcome(action="refunded", order_id=order.id, changed=True)

    if order.status == OrderStatus.CANCELLED:
        changed = _record_late_payment(order)
        changed = _record_marketplace_ids(order, shopify_order_id, shopify_order_name) or changed
        await db.commit()
        return ReconcileOutcome(action="cancelled_order_paid", order_id=order.id, changed=changed)

    # Only a paid draft invoice is a customer payment; synced orders carry no draft id
    if draft_order_id and _is_second_payment(order, PaymentProviderKind.SHOPIFY):
        _record_second_payment(order, PaymentProviderKind.SHOPIFY, shopify_order_id)
        await db.commit()
        return ReconcileOutcome(action="duplicate_payment", order_id=order.id)

    if order.status != OrderStatus.DRAFT:
        # Cash orders synced as paid marketplace orders, or a replay
        changed = _record_marketplace_ids(order, shopify_order_id, shopify_order_name)
        await db.commit()
        return ReconcileOutcome(action="already_processed", order_id=order.id, changed=changed)

    _mark_paid(order, PaymentProviderKind.SHOPIFY)
    _record_marketplace_ids(order, shopify_order_id, shopify_order_name)
    await db.commit()

    logger.info(
        "Order %s paid via Shopify order %s (%s)",
        order.order_number,
        shopify_order_name,
        financial_status,
    )

    await schedule_inventory_decrement(task_queue, order.id)
    await schedule_payment_confirmation(task_queue, order.id)
    return ReconcileOutcome(action="paid", order_id=order.id, changed=True)
