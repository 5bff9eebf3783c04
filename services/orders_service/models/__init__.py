"""Orders Service models package."""

from services.orders_service.models.catalog import (
    Business,
    MarketplaceConnection,
    Product,
    ProductVariant,
)
from services.orders_service.models.commerce import (
    Order,
    OrderItem,
    OrderNumberCounter,
)
from services.orders_service.models.enums import (
    DeliveryType,
    InventoryPolicy,
    OrderStatus,
    PaymentMethod,
    PaymentProviderKind,
    PaymentStatus,
)

__all__ = [
    "Business",
    "DeliveryType",
    "InventoryPolicy",
    "MarketplaceConnection",
    "Order",
    "OrderItem",
    "OrderNumberCounter",
    "OrderStatus",
    "PaymentMethod",
    "PaymentProviderKind",
    "PaymentStatus",
    "Product",
    "ProductVariant",
]
