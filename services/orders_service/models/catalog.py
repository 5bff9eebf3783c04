"""Catalog models: businesses, marketplace connections, products, variants.

Catalog CRUD belongs to another service; this service reads these tables
and only writes variant inventory through the inventory adjuster.
"""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.orders_service.models.enums import InventoryPolicy, enum_values
from sqlalchemy import Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# BUSINESS MODELS
# ============================================================================


class Business(Base):
    """A merchant selling through the chat assistant."""

    __tablename__ = "businesses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_auth_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_currency: Mapped[str] = mapped_column(
        String(3), default="USD", server_default="USD"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<Business {self.name}>"


class MarketplaceConnection(Base):
    """Connected Shopify store for a business (at most one)."""

    __tablename__ = "marketplace_connections"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("businesses.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    shop_domain: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )  # e.g. "acme.myshopify.com"
    access_token: Mapped[str] = mapped_column(String(255), nullable=False)
    # Per-app webhook secret; falls back to SHOPIFY_API_SECRET when unset
    webhook_secret: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<MarketplaceConnection {self.shop_domain}>"


# ============================================================================
# PRODUCT MODELS
# ============================================================================


class Product(Base):
    """Sellable product. Prices are integer minor units."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default="0")

    # "gid://shopify/ProductVariant/123" for single-variant marketplace products
    external_variant_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    variants = relationship("ProductVariant", back_populates="product")

    def __repr__(self):
        return f"<Product {self.name}>"


class ProductVariant(Base):
    """Inventory-bearing variant of a product."""

    __tablename__ = "product_variants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Overrides the product price when set
    price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    inventory_quantity: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    inventory_policy: Mapped[InventoryPolicy] = mapped_column(
        SAEnum(
            InventoryPolicy,
            values_callable=enum_values,
            name="inventory_policy_enum",
        ),
        default=InventoryPolicy.DENY,
        server_default="deny",
    )
    track_inventory: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="1"
    )
    available: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1")

    external_variant_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    product = relationship("Product", back_populates="variants")

    def __repr__(self):
        return f"<ProductVariant {self.sku or self.name} qty={self.inventory_quantity}>"
