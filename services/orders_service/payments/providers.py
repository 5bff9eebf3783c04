"""The three payment paths: cash, hosted checkout (Stripe), marketplace (Shopify)."""

from datetime import timedelta

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import PaymentProviderError
from services.orders_service.models import PaymentProviderKind
from services.orders_service.payments.base import (
    PaymentArtifact,
    PaymentProvider,
    PaymentRequest,
)
from services.orders_service.payments.shopify_client import (
    ShopifyClient,
    ShopifyError,
    build_draft_order_payload,
    build_line_items,
)
from services.orders_service.payments.stripe_client import StripeClient, StripeError

logger = get_logger(__name__)


class CashProvider(PaymentProvider):
    """Payment on pickup/delivery; nothing external to create."""

    kind = PaymentProviderKind.CASH

    async def create_payment_artifact(self, request: PaymentRequest) -> PaymentArtifact:
        return PaymentArtifact(provider=self.kind)


class HostedCheckoutProvider(PaymentProvider):
    kind = PaymentProviderKind.STRIPE

    def __init__(self, client: StripeClient, frontend_url: str, link_ttl: timedelta):
        self.client = client
        self.frontend_url = frontend_url.rstrip("/")
        self.link_ttl = link_ttl

    def _line_items(self, request: PaymentRequest) -> list[dict]:
        currency = request.currency.lower()
        line_items = [
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": line.name},
                    "unit_amount": line.unit_price,
                },
                "quantity": line.quantity,
            }
            for line in request.lines
        ]
        if request.delivery_fee > 0:
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": "Delivery"},
                        "unit_amount": request.delivery_fee,
                    },
                    "quantity": 1,
                }
            )
        return line_items

    async def create_payment_artifact(self, request: PaymentRequest) -> PaymentArtifact:
        order_url = f"{self.frontend_url}/orders/{request.order_id}"
        try:
            session = await self.client.create_checkout_session(
                line_items=self._line_items(request),
                success_url=f"{order_url}?payment=success",
                cancel_url=f"{order_url}?payment=cancelled",
                metadata={
                    "orderId": str(request.order_id),
                    "orderNumber": request.order_number,
                },
            )
        except StripeError as exc:
            raise PaymentProviderError(f"Stripe checkout failed: {exc.message}") from exc

        return PaymentArtifact(
            provider=self.kind,
            url=session.url,
            external_id=session.id,
            expires_at=utc_now() + self.link_ttl,
        )


class MarketplaceProvider(PaymentProvider):
    kind = PaymentProviderKind.SHOPIFY

    def __init__(self, client: ShopifyClient, link_ttl: timedelta):
        self.client = client
        self.link_ttl = link_ttl

    async def create_payment_artifact(self, request: PaymentRequest) -> PaymentArtifact:
        line_items, skipped = build_line_items(request)
        if not line_items:
            raise PaymentProviderError(
                f"No Shopify products to order. Skipped: {', '.join(skipped)}"
            )

        try:
            draft = await self.client.create_draft_order(
                build_draft_order_payload(request, line_items)
            )
        except ShopifyError as exc:
            raise PaymentProviderError(exc.message) from exc

        if skipped:
            logger.warning(
                "Skipped items for order %s: %s", request.order_number, ", ".join(skipped)
            )

        return PaymentArtifact(
            provider=self.kind,
            url=draft.invoice_url,
            external_id=draft.id,
            external_number=draft.name,
            expires_at=utc_now() + self.link_ttl,
            skipped_items=skipped,
        )
