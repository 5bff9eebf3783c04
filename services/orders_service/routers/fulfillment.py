"""Staff fulfillment actions."""

import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.task_queue import TaskQueue, get_task_queue
from libs.db.session import get_async_db
from services.orders_service.schemas import CancelOrderRequest, OrderResponse
from services.orders_service.services import fulfillment
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["fulfillment"])


@router.post("/{order_id}/confirm", response_model=OrderResponse)
async def confirm_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    task_queue: TaskQueue = Depends(get_task_queue),
):
    return await fulfillment.confirm_order(
        db, actor=current_user, order_id=order_id, task_queue=task_queue
    )


@router.post("/{order_id}/prepare", response_model=OrderResponse)
async def mark_preparing(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await fulfillment.mark_preparing(db, actor=current_user, order_id=order_id)


@router.post("/{order_id}/ready", response_model=OrderResponse)
async def mark_ready(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await fulfillment.mark_ready(db, actor=current_user, order_id=order_id)


@router.post("/{order_id}/deliver", response_model=OrderResponse)
async def mark_delivered(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await fulfillment.mark_delivered(db, actor=current_user, order_id=order_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    payload: Optional[CancelOrderRequest] = Body(None),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Cancel a draft or confirmed order. Paid orders need a refund instead."""
    return await fulfillment.cancel_order(
        db,
        actor=current_user,
        order_id=order_id,
        reason=payload.reason if payload else None,
    )
