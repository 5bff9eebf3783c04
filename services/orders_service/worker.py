"""ARQ worker for deferred order side effects and the inventory sweep."""

import uuid

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import configure_logging, get_logger
from libs.db.config import AsyncSessionLocal

logger = get_logger(__name__)


async def startup(ctx: dict):
    configure_logging()


async def task_decrement_order_inventory(ctx: dict, order_id: str):
    from services.orders_service.services.inventory import decrement_order_inventory

    try:
        async with AsyncSessionLocal() as db:
            await decrement_order_inventory(db, uuid.UUID(order_id))
    except Exception as exc:
        # The sweep retries orders left without a decrement
        logger.error("Inventory decrement failed for %s: %s", order_id, exc, exc_info=True)


async def task_create_marketplace_order(ctx: dict, order_id: str):
    from services.orders_service.tasks import create_marketplace_order

    try:
        async with AsyncSessionLocal() as db:
            await create_marketplace_order(db, uuid.UUID(order_id))
    except Exception as exc:
        logger.error("Marketplace sync failed for %s: %s", order_id, exc, exc_info=True)


async def task_send_payment_confirmation(ctx: dict, order_id: str):
    from services.orders_service.tasks import send_payment_confirmation

    try:
        async with AsyncSessionLocal() as db:
            await send_payment_confirmation(db, uuid.UUID(order_id))
    except Exception as exc:
        logger.error("Payment confirmation failed for %s: %s", order_id, exc, exc_info=True)


async def task_reconcile_pending_inventory(ctx: dict):
    from services.orders_service.services.inventory import reconcile_pending_inventory

    logger.info("Running: reconcile_pending_inventory")
    try:
        async with AsyncSessionLocal() as db:
            await reconcile_pending_inventory(db)
    except Exception as exc:
        logger.error("Inventory sweep failed: %s", exc, exc_info=True)


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = startup

    # Side-effect jobs are not retried; failures are logged and the sweep
    # catches missed inventory decrements.
    max_tries = 1

    functions = [
        task_decrement_order_inventory,
        task_create_marketplace_order,
        task_send_payment_confirmation,
        task_reconcile_pending_inventory,
    ]

    cron_jobs = [
        cron(
            task_reconcile_pending_inventory,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
    ]
