"""Payment provider contract.

A provider turns a draft order into something the customer can pay: a
hosted checkout URL, a marketplace invoice, or (for cash) nothing at all.
Providers run outside any database transaction, so they receive a plain
snapshot of the order rather than the ORM object.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from services.orders_service.models import DeliveryType, Order, PaymentProviderKind


@dataclass
class PaymentLine:
    name: str
    quantity: int
    unit_price: int  # minor units
    external_variant_id: Optional[str] = None


@dataclass
class PaymentRequest:
    """Everything a provider needs, detached from the session."""

    order_id: uuid.UUID
    order_number: str
    currency: str
    total: int
    lines: list[PaymentLine]
    contact_phone: str
    delivery_fee: int = 0
    contact_name: Optional[str] = None
    notes: Optional[str] = None
    delivery_type: DeliveryType = DeliveryType.PICKUP
    delivery_address: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "PaymentRequest":
        lines = []
        for item in order.items:
            name = item.product_name
            if item.variant_name:
                name = f"{item.product_name} - {item.variant_name}"
            lines.append(
                PaymentLine(
                    name=name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    external_variant_id=item.external_variant_id,
                )
            )
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            currency=order.currency,
            total=order.total,
            lines=lines,
            delivery_fee=order.delivery_fee or 0,
            contact_phone=order.contact_phone,
            contact_name=order.contact_name,
            notes=order.notes,
            delivery_type=order.delivery_type,
            delivery_address=order.delivery_address,
        )


@dataclass
class PaymentArtifact:
    """What a provider produced for one payment attempt."""

    provider: PaymentProviderKind
    url: Optional[str] = None
    # Stripe checkout session id or Shopify draft order id
    external_id: Optional[str] = None
    # Shopify display name, e.g. "#D12"
    external_number: Optional[str] = None
    expires_at: Optional[datetime] = None
    skipped_items: list[str] = field(default_factory=list)


class PaymentProvider(ABC):
    kind: PaymentProviderKind

    @abstractmethod
    async def create_payment_artifact(self, request: PaymentRequest) -> PaymentArtifact:
        """Create the external artifact. Raises PaymentProviderError on failure."""
