"""Background side effects for orders: marketplace sync and customer messages.

Each function takes an open session and is safe to run more than once.
Failures are logged and swallowed; the order change that scheduled them is
already committed and must not be undone by a failing side effect.
"""

from __future__ import annotations

import uuid
from typing import Awaitable, Callable

from libs.common.currency import format_money
from libs.common.logging import get_logger
from libs.common.service_client import send_customer_message
from services.orders_service.models import Order, OrderStatus, PaymentStatus
from services.orders_service.payments.base import PaymentRequest
from services.orders_service.payments.orchestrator import (
    ShopifyClientFactory,
    default_shopify_client,
    get_marketplace_connection,
)
from services.orders_service.payments.shopify_client import (
    ShopifyError,
    build_line_items,
    build_paid_order_payload,
)
from services.orders_service.services.locking import lock_order
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

CALLING_SERVICE = "orders_service"

MessageSender = Callable[..., Awaitable[dict]]


# ---------------------------------------------------------------------------
# Marketplace order sync
# ---------------------------------------------------------------------------


async def create_marketplace_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    shopify_client_factory: ShopifyClientFactory = default_shopify_client,
) -> bool:
    """Mirror a confirmed/paid order into Shopify as an already-paid order.

    Skips orders that already have a marketplace order, and orders paid
    through a Shopify draft (that draft becomes the marketplace order).
    """
    order = await db.get(Order, order_id)
    if order is None:
        logger.warning("Marketplace sync: order %s not found", order_id)
        return False
    if order.status in (OrderStatus.DRAFT, OrderStatus.CANCELLED):
        logger.info("Marketplace sync skipped for %s order %s", order.status.value, order.order_number)
        return False
    if order.shopify_order_id or order.shopify_draft_order_id:
        logger.info("Order %s already has a marketplace order", order.order_number)
        return False

    connection = await get_marketplace_connection(db, order.business_id)
    if connection is None:
        logger.info("No marketplace connection for business %s", order.business_id)
        return False

    request = PaymentRequest.from_order(order)
    line_items, skipped = build_line_items(request)
    if not line_items:
        logger.error(
            "No Shopify products to order for %s. Skipped: %s",
            order.order_number,
            ", ".join(skipped),
        )
        return False

    client = shopify_client_factory(connection)
    # Release the read before calling out
    await db.commit()

    try:
        result = await client.create_order(build_paid_order_payload(request, line_items))
    except ShopifyError as exc:
        logger.error(
            "Shopify order creation failed for %s: %s", request.order_number, exc.message
        )
        return False

    order = await lock_order(db, order_id)
    if order.shopify_order_id and order.shopify_order_id != result.id:
        logger.warning(
            "Order %s already linked to Shopify order %s; new order %s is a duplicate",
            order.order_number,
            order.shopify_order_id,
            result.id,
        )
        await db.commit()
        return False

    order.shopify_order_id = result.id
    order.shopify_order_number = result.name
    await db.commit()

    if skipped:
        logger.warning(
            "Skipped items for order %s: %s", order.order_number, ", ".join(skipped)
        )
    logger.info(
        "Created Shopify order %s (ID: %s) for order %s",
        result.name,
        result.id,
        order.order_number,
    )
    return True


# ---------------------------------------------------------------------------
# Customer confirmation
# ---------------------------------------------------------------------------


def build_confirmation_text(order: Order) -> str:
    text = (
        f"Thank you for your payment! Your order {order.order_number} has been confirmed."
        f" Total paid: {format_money(order.total, order.currency)}."
    )
    if order.shopify_order_number:
        text += f" Shopify order reference: {order.shopify_order_number}."
    return text + " We'll start preparing it right away!"


async def send_payment_confirmation(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    sender: MessageSender = send_customer_message,
) -> bool:
    order = await db.get(Order, order_id)
    if order is None:
        logger.warning("Payment confirmation: order %s not found", order_id)
        return False
    if order.payment_status != PaymentStatus.PAID or order.status == OrderStatus.CANCELLED:
        logger.info("Payment confirmation skipped for order %s", order.order_number)
        return False

    try:
        await sender(
            order.conversation_id,
            build_confirmation_text(order),
            calling_service=CALLING_SERVICE,
        )
    except Exception as exc:
        logger.error(
            "Failed to send payment confirmation for order %s: %s",
            order.order_number,
            exc,
            exc_info=True,
        )
        return False

    logger.info("Sent payment confirmation for order %s", order.order_number)
    return True
