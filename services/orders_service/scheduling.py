"""Names and enqueue helpers for deferred order side effects.

Handlers are idempotent, so a job may be enqueued more than once; the
per-order job id lets ARQ drop duplicates that are still queued.
"""

import uuid

from libs.common.logging import get_logger
from libs.common.task_queue import TaskQueue

logger = get_logger(__name__)

TASK_DECREMENT_INVENTORY = "task_decrement_order_inventory"
TASK_CREATE_MARKETPLACE_ORDER = "task_create_marketplace_order"
TASK_SEND_PAYMENT_CONFIRMATION = "task_send_payment_confirmation"


async def schedule_task(queue: TaskQueue, task_name: str, order_id: uuid.UUID) -> bool:
    """Enqueue ``task_name`` for an order after the caller has committed.

    Enqueue failures are logged, not raised: the order change is already
    durable and the inventory sweep picks up missed decrements.
    """
    try:
        return await queue.enqueue(
            task_name, str(order_id), job_id=f"{task_name}:{order_id}"
        )
    except Exception as exc:
        logger.error(
            "Failed to enqueue %s for order %s: %s",
            task_name,
            order_id,
            exc,
            exc_info=True,
        )
        return False


async def schedule_inventory_decrement(queue: TaskQueue, order_id: uuid.UUID) -> bool:
    return await schedule_task(queue, TASK_DECREMENT_INVENTORY, order_id)


async def schedule_marketplace_order(queue: TaskQueue, order_id: uuid.UUID) -> bool:
    return await schedule_task(queue, TASK_CREATE_MARKETPLACE_ORDER, order_id)


async def schedule_payment_confirmation(queue: TaskQueue, order_id: uuid.UUID) -> bool:
    return await schedule_task(queue, TASK_SEND_PAYMENT_CONFIRMATION, order_id)
