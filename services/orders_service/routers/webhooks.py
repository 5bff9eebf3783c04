"""Stripe and Shopify webhook endpoints (no auth; verified by HMAC signature)."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.task_queue import TaskQueue, get_task_queue
from libs.db.session import get_async_db
from services.orders_service.payments.signatures import (
    verify_shopify_hmac,
    verify_stripe_signature,
)
from services.orders_service.reconciler import (
    get_connection_by_shop,
    handle_shopify_order_event,
    handle_stripe_event,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


def _parse_json(raw: bytes) -> dict:
    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload"
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload"
        )
    return payload


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    task_queue: TaskQueue = Depends(get_task_queue),
):
    settings = get_settings()
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )

    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header"
        )

    raw = await request.body()
    if not verify_stripe_signature(
        raw,
        signature,
        settings.STRIPE_WEBHOOK_SECRET,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    ):
        logger.warning("Invalid Stripe webhook signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    event = _parse_json(raw)
    logger.info("Stripe webhook received: %s", event.get("type"))

    try:
        await handle_stripe_event(db, event, task_queue)
    except Exception as exc:
        # Acknowledge anyway; provider retries would not fix an application error
        logger.error(
            "Error processing Stripe webhook %s: %s", event.get("type"), exc, exc_info=True
        )
        await db.rollback()

    return {"received": True}


@router.post("/shopify")
async def shopify_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    task_queue: TaskQueue = Depends(get_task_queue),
):
    shop = request.headers.get("x-shopify-shop-domain")
    topic = request.headers.get("x-shopify-topic")
    hmac_header = request.headers.get("x-shopify-hmac-sha256")
    if not shop or not topic or not hmac_header:
        logger.error(
            "Missing required Shopify headers (shop=%s topic=%s hmac=%s)",
            shop,
            topic,
            bool(hmac_header),
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required headers"
        )

    connection = await get_connection_by_shop(db, shop)
    secret = (connection.webhook_secret if connection else None) or get_settings().SHOPIFY_API_SECRET
    if not secret:
        logger.error("No Shopify webhook secret configured for %s", shop)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )

    raw = await request.body()
    if not verify_shopify_hmac(raw, hmac_header, secret):
        logger.warning("Invalid Shopify webhook signature from %s", shop)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    payload = _parse_json(raw)
    logger.info("Shopify webhook received: %s from %s", topic, shop)

    try:
        await handle_shopify_order_event(
            db, shop_domain=shop, topic=topic, payload=payload, task_queue=task_queue
        )
    except Exception as exc:
        logger.error("Error processing Shopify webhook %s: %s", topic, exc, exc_info=True)
        await db.rollback()

    return {"received": True}
