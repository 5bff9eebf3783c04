"""Outbound task queue backed by ARQ.

Request handlers and webhook reconcilers never call external providers
while holding a row lock. Side effects (inventory decrement, marketplace
order creation, customer messages) are scheduled here after commit and
executed by the ARQ worker.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from libs.common.arq_config import get_redis_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class TaskQueue(Protocol):
    async def enqueue(self, task_name: str, *args: Any, job_id: Optional[str] = None) -> bool:
        ...


class ArqTaskQueue:
    """Lazily connects to Redis on first enqueue."""

    def __init__(self, redis_settings: Optional[RedisSettings] = None):
        self._redis_settings = redis_settings
        self._pool: Optional[ArqRedis] = None

    async def _get_pool(self) -> ArqRedis:
        if self._pool is None:
            self._pool = await create_pool(self._redis_settings or get_redis_settings())
        return self._pool

    async def enqueue(self, task_name: str, *args: Any, job_id: Optional[str] = None) -> bool:
        """Schedule ``task_name``. Returns False if ARQ deduplicated the job id."""
        pool = await self._get_pool()
        job = await pool.enqueue_job(task_name, *args, _job_id=job_id)
        if job is None:
            logger.info("Task %s already queued (job_id=%s)", task_name, job_id)
            return False
        return True

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None


_task_queue: Optional[ArqTaskQueue] = None


def get_task_queue() -> TaskQueue:
    """FastAPI dependency returning the process-wide queue."""
    global _task_queue
    if _task_queue is None:
        _task_queue = ArqTaskQueue()
    return _task_queue
