"""Pydantic schemas for orders service."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.orders_service.models import (
    DeliveryType,
    OrderStatus,
    PaymentMethod,
    PaymentProviderKind,
    PaymentStatus,
)

# ============================================================================
# ORDER INPUT SCHEMAS
# ============================================================================


class OrderItemInput(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int = Field(1, ge=1)


class OrderCreate(BaseModel):
    """Create a draft order from a conversation."""

    business_id: uuid.UUID
    conversation_id: str = Field(..., min_length=1, max_length=255)
    contact_phone: str = Field(..., min_length=1, max_length=50)
    contact_name: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    items: list[OrderItemInput] = Field(default_factory=list)


class OrderItemRef(BaseModel):
    """Identifies a line by product and optional variant."""

    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None


class OrderItemQuantityUpdate(OrderItemRef):
    # <= 0 removes the line
    quantity: int


class DeliveryInfoUpdate(BaseModel):
    delivery_type: DeliveryType
    delivery_address: Optional[str] = None
    delivery_notes: Optional[str] = None
    contact_phone: Optional[str] = Field(None, max_length=50)
    delivery_fee: Optional[int] = Field(None, ge=0)


class PaymentMethodUpdate(BaseModel):
    payment_method: PaymentMethod


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


# ============================================================================
# ORDER RESPONSE SCHEMAS
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    product_name: str
    variant_name: Optional[str]
    sku: Optional[str]
    quantity: int
    unit_price: int
    total_price: int


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    business_id: uuid.UUID
    conversation_id: str
    order_number: str
    status: OrderStatus

    contact_phone: str
    contact_name: Optional[str]
    notes: Optional[str]

    items: list[OrderItemResponse]
    subtotal: int
    delivery_fee: int
    total: int
    currency: str

    delivery_type: DeliveryType
    delivery_address: Optional[str]
    delivery_notes: Optional[str]

    payment_method: PaymentMethod
    payment_provider: Optional[PaymentProviderKind]
    payment_status: PaymentStatus
    payment_link_url: Optional[str]
    payment_link_expires_at: Optional[datetime]
    paid_at: Optional[datetime]

    stripe_session_id: Optional[str]
    shopify_draft_order_id: Optional[str]
    shopify_order_id: Optional[str]
    shopify_order_number: Optional[str]

    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    """Paginated order list."""

    items: list[OrderResponse]
    total: int
    page: int
    page_size: int


class PaymentLinkResponse(BaseModel):
    order_id: uuid.UUID
    provider: PaymentProviderKind
    url: str
    expires_at: Optional[datetime] = None
    external_id: Optional[str] = None
    # Lines the marketplace could not map to a variant; the link omits them
    skipped_items: list[str] = Field(default_factory=list)
    fallback_reason: Optional[str] = None
