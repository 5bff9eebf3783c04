"""Orders router: creation, line items, delivery, payment method and links, reads."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.task_queue import TaskQueue, get_task_queue
from libs.db.session import get_async_db
from services.orders_service.models import OrderStatus
from services.orders_service.payments.orchestrator import (
    PaymentOrchestrator,
    get_payment_orchestrator,
)
from services.orders_service.schemas import (
    DeliveryInfoUpdate,
    OrderCreate,
    OrderItemInput,
    OrderItemQuantityUpdate,
    OrderListResponse,
    OrderResponse,
    PaymentLinkResponse,
    PaymentMethodUpdate,
)
from services.orders_service.services import orders as order_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["orders"])


# ============================================================================
# CREATE & READ
# ============================================================================


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a draft order from a conversation."""
    return await order_ops.create_order(
        db,
        actor=current_user,
        business_id=payload.business_id,
        conversation_id=payload.conversation_id,
        contact_phone=payload.contact_phone,
        contact_name=payload.contact_name,
        notes=payload.notes,
        items=payload.items,
    )


@router.get("", response_model=OrderListResponse)
async def list_orders(
    business_id: uuid.UUID,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List a business's orders, newest first."""
    orders, total = await order_ops.list_orders(
        db,
        actor=current_user,
        business_id=business_id,
        status=status_filter,
        page=page,
        page_size=page_size,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/by-conversation", response_model=OrderResponse)
async def get_order_by_conversation(
    business_id: uuid.UUID,
    conversation_id: str,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.get_order_by_conversation(
        db,
        actor=current_user,
        business_id=business_id,
        conversation_id=conversation_id,
    )


@router.get("/by-number/{order_number}", response_model=OrderResponse)
async def get_order_by_number(
    order_number: str,
    business_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.get_order_by_number(
        db, actor=current_user, business_id=business_id, order_number=order_number
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.get_order(db, actor=current_user, order_id=order_id)


# ============================================================================
# LINE ITEMS
# ============================================================================


@router.post("/{order_id}/items", response_model=OrderResponse)
async def add_item(
    order_id: uuid.UUID,
    payload: OrderItemInput,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.add_item(
        db,
        actor=current_user,
        order_id=order_id,
        product_id=payload.product_id,
        variant_id=payload.variant_id,
        quantity=payload.quantity,
    )


@router.patch("/{order_id}/items", response_model=OrderResponse)
async def update_item_quantity(
    order_id: uuid.UUID,
    payload: OrderItemQuantityUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Change a line's quantity; zero removes it."""
    return await order_ops.update_item_quantity(
        db,
        actor=current_user,
        order_id=order_id,
        product_id=payload.product_id,
        variant_id=payload.variant_id,
        quantity=payload.quantity,
    )


@router.delete("/{order_id}/items", response_model=OrderResponse)
async def remove_item(
    order_id: uuid.UUID,
    product_id: uuid.UUID,
    variant_id: Optional[uuid.UUID] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.remove_item(
        db,
        actor=current_user,
        order_id=order_id,
        product_id=product_id,
        variant_id=variant_id,
    )


# ============================================================================
# DELIVERY & PAYMENT
# ============================================================================


@router.put("/{order_id}/delivery", response_model=OrderResponse)
async def set_delivery_info(
    order_id: uuid.UUID,
    payload: DeliveryInfoUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.set_delivery_info(
        db,
        actor=current_user,
        order_id=order_id,
        delivery_type=payload.delivery_type,
        delivery_address=payload.delivery_address,
        delivery_notes=payload.delivery_notes,
        contact_phone=payload.contact_phone,
        delivery_fee=payload.delivery_fee,
    )


@router.put("/{order_id}/payment-method", response_model=OrderResponse)
async def set_payment_method(
    order_id: uuid.UUID,
    payload: PaymentMethodUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    task_queue: TaskQueue = Depends(get_task_queue),
):
    """Cash confirms the order; card waits for a payment link."""
    return await order_ops.set_payment_method(
        db,
        actor=current_user,
        order_id=order_id,
        method=payload.payment_method,
        task_queue=task_queue,
    )


@router.post("/{order_id}/payment-link", response_model=PaymentLinkResponse)
async def create_payment_link(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """Create a Shopify invoice or Stripe checkout link for a draft order."""
    result = await orchestrator.create_payment_link(
        db, actor=current_user, order_id=order_id
    )
    return PaymentLinkResponse(
        order_id=result.order.id,
        provider=result.artifact.provider,
        url=result.artifact.url,
        expires_at=result.artifact.expires_at,
        external_id=result.artifact.external_id,
        skipped_items=result.artifact.skipped_items,
        fallback_reason=result.fallback_reason,
    )
