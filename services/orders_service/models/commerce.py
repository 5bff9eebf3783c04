"""Order models: orders, line item snapshots, per-business number counters."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.orders_service.models.enums import (
    DeliveryType,
    OrderStatus,
    PaymentMethod,
    PaymentProviderKind,
    PaymentStatus,
    enum_values,
)
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """Order aggregate root. Money columns are integer minor units."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id"), nullable=False, index=True
    )
    conversation_id: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True
    )
    order_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Status
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="order_status_enum",
        ),
        default=OrderStatus.DRAFT,
        server_default="draft",
    )

    # Customer
    contact_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Delivery
    delivery_type: Mapped[DeliveryType] = mapped_column(
        SAEnum(
            DeliveryType,
            values_callable=enum_values,
            name="delivery_type_enum",
        ),
        default=DeliveryType.PICKUP,
        server_default="pickup",
    )
    delivery_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Totals
    subtotal: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delivery_fee: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Payment
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(
            PaymentMethod,
            values_callable=enum_values,
            name="payment_method_enum",
        ),
        default=PaymentMethod.CASH,
        server_default="cash",
    )
    payment_provider: Mapped[Optional[PaymentProviderKind]] = mapped_column(
        SAEnum(
            PaymentProviderKind,
            values_callable=enum_values,
            name="payment_provider_enum",
        ),
        nullable=True,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            values_callable=enum_values,
            name="payment_status_enum",
        ),
        default=PaymentStatus.PENDING,
        server_default="pending",
    )
    payment_link_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_link_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Provider correlation
    stripe_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    shopify_draft_order_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    shopify_order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    shopify_order_number: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )

    # Inventory side effects (set once each)
    inventory_decremented_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    inventory_restored_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Cancellation
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("business_id", "order_number", name="unique_business_order_number"),
        CheckConstraint("total = subtotal + delivery_fee", name="order_total_matches"),
        Index("ix_orders_business_status_created", "business_id", "status", "created_at"),
    )

    # Relationships
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order {self.order_number} status={self.status}>"


class OrderItem(Base):
    """Line item snapshot taken when the item was added."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id"), nullable=False
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("product_variants.id"), nullable=True
    )

    # Snapshot
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    external_variant_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)

    # Units actually removed from stock, so restore is exact when the floor was hit
    inventory_deducted: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (CheckConstraint("quantity > 0", name="positive_item_quantity"),)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.product_name} qty={self.quantity}>"


class OrderNumberCounter(Base):
    """Last issued order sequence per business and prefix."""

    __tablename__ = "order_number_counters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    prefix: Mapped[str] = mapped_column(String(3), nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("business_id", "prefix", name="unique_business_prefix_counter"),
    )
