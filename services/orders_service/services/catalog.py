"""Read-only catalog view plus the single inventory mutation entry point."""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import NotFoundError, ValidationError
from services.orders_service.models import InventoryPolicy, Product, ProductVariant
from services.orders_service.services.locking import lock_variant
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class LineSnapshot:
    """Price/name/sku captured when a line is added to an order."""

    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    product_name: str
    variant_name: Optional[str]
    sku: Optional[str]
    external_variant_id: Optional[str]
    unit_price: int
    currency: str


async def get_product(db: AsyncSession, product_id: uuid.UUID) -> Optional[Product]:
    return await db.get(Product, product_id)


async def get_variant(
    db: AsyncSession, variant_id: uuid.UUID
) -> Optional[ProductVariant]:
    return await db.get(ProductVariant, variant_id)


async def resolve_line(
    db: AsyncSession,
    *,
    business_id: uuid.UUID,
    product_id: uuid.UUID,
    variant_id: Optional[uuid.UUID] = None,
    quantity: int = 1,
) -> LineSnapshot:
    """Validate a product/variant for ``business_id`` and snapshot its price."""
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    product = await get_product(db, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.business_id != business_id:
        raise ValidationError("Product does not belong to this business")
    if product.deleted:
        raise ValidationError(f"Product {product.name} is no longer available")

    if variant_id is None:
        return LineSnapshot(
            product_id=product.id,
            variant_id=None,
            product_name=product.name,
            variant_name=None,
            sku=None,
            external_variant_id=product.external_variant_id,
            unit_price=product.price,
            currency=product.currency,
        )

    variant = await get_variant(db, variant_id)
    if variant is None:
        raise NotFoundError("Variant not found")
    if variant.product_id != product.id:
        raise ValidationError("Variant does not belong to this product")
    if not variant.available:
        raise ValidationError(f"{product.name} ({variant.name}) is not available")

    return LineSnapshot(
        product_id=product.id,
        variant_id=variant.id,
        product_name=product.name,
        variant_name=variant.name,
        sku=variant.sku,
        external_variant_id=variant.external_variant_id or product.external_variant_id,
        unit_price=variant.price if variant.price is not None else product.price,
        currency=product.currency,
    )


def apply_inventory_delta(variant: ProductVariant, delta: int) -> int:
    """Apply ``delta`` floored at zero and return the delta actually applied.

    Under the ``deny`` policy a variant becomes unavailable at zero and is
    re-enabled when an increment brings it back above zero.
    """
    before = variant.inventory_quantity
    after = max(0, before + delta)
    variant.inventory_quantity = after
    if variant.inventory_policy == InventoryPolicy.DENY:
        if after <= 0:
            variant.available = False
        elif delta > 0:
            variant.available = True
    variant.updated_at = utc_now()
    return after - before


async def adjust_variant_inventory(
    db: AsyncSession, variant_id: uuid.UUID, delta: int
) -> int:
    """Lock a variant and adjust its stock. Untracked variants are left alone.

    Does not commit; callers fold this into their own transaction.
    """
    variant = await lock_variant(db, variant_id)
    if variant is None:
        logger.warning("Variant %s no longer exists, skipping inventory delta", variant_id)
        return 0
    if not variant.track_inventory:
        return 0

    applied = apply_inventory_delta(variant, delta)
    logger.info(
        "Inventory %s: %+d (requested %+d) -> %d available=%s",
        variant.id,
        applied,
        delta,
        variant.inventory_quantity,
        variant.available,
    )
    return applied
