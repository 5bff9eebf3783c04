"""Payment orchestrator: pick a provider chain, create a link, record it.

The external call happens with no row lock held. The order is validated
and the lock released first; after the provider answers, the order is
locked again and re-validated before the artifact is stored.
"""

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from libs.auth.models import AuthUser
from libs.common.config import Settings, get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import (
    InvalidStateError,
    NoPaymentProviderError,
    PaymentProviderError,
    ValidationError,
)
from services.orders_service.models import (
    MarketplaceConnection,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentProviderKind,
    PaymentStatus,
)
from services.orders_service.payments.base import (
    PaymentArtifact,
    PaymentProvider,
    PaymentRequest,
)
from services.orders_service.payments.providers import (
    HostedCheckoutProvider,
    MarketplaceProvider,
)
from services.orders_service.payments.shopify_client import ShopifyClient
from services.orders_service.payments.stripe_client import StripeClient
from services.orders_service.services.access import require_order_access
from services.orders_service.services.lifecycle import payment_link_active
from services.orders_service.services.locking import lock_order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

StripeClientFactory = Callable[[], StripeClient]
ShopifyClientFactory = Callable[[MarketplaceConnection], ShopifyClient]


def default_stripe_client() -> StripeClient:
    return StripeClient()


def default_shopify_client(connection: MarketplaceConnection) -> ShopifyClient:
    return ShopifyClient(connection.shop_domain, connection.access_token)


@dataclass
class PaymentLinkResult:
    order: Order
    artifact: PaymentArtifact
    fallback_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


async def get_marketplace_connection(
    db: AsyncSession, business_id: uuid.UUID
) -> Optional[MarketplaceConnection]:
    result = await db.execute(
        select(MarketplaceConnection).where(
            MarketplaceConnection.business_id == business_id,
            MarketplaceConnection.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


def build_provider_chain(
    connection: Optional[MarketplaceConnection],
    settings: Settings,
    *,
    stripe_client_factory: StripeClientFactory = default_stripe_client,
    shopify_client_factory: ShopifyClientFactory = default_shopify_client,
) -> list[PaymentProvider]:
    """Marketplace first when connected, then hosted checkout when configured."""
    link_ttl = timedelta(hours=settings.PAYMENT_LINK_TTL_HOURS)
    chain: list[PaymentProvider] = []
    if connection is not None and connection.is_active:
        chain.append(MarketplaceProvider(shopify_client_factory(connection), link_ttl))
    if settings.hosted_checkout_enabled:
        chain.append(
            HostedCheckoutProvider(
                stripe_client_factory(), settings.FRONTEND_URL, link_ttl
            )
        )
    return chain


# ---------------------------------------------------------------------------
# Recording artifacts
# ---------------------------------------------------------------------------


def apply_payment_artifact(order: Order, artifact: PaymentArtifact) -> None:
    """Record a new payment attempt, superseding any earlier one."""
    order.payment_provider = artifact.provider
    order.payment_status = PaymentStatus.PENDING
    order.payment_link_url = artifact.url
    order.payment_link_expires_at = artifact.expires_at
    order.stripe_session_id = None
    order.shopify_draft_order_id = None
    order.shopify_order_number = None

    if artifact.provider == PaymentProviderKind.STRIPE:
        order.stripe_session_id = artifact.external_id
    elif artifact.provider == PaymentProviderKind.SHOPIFY:
        order.shopify_draft_order_id = artifact.external_id
        order.shopify_order_number = artifact.external_number
    order.updated_at = utc_now()


def expire_stale_link(order: Order) -> bool:
    """Lazily fail a pending attempt whose link is past its expiry."""
    if (
        order.payment_link_url
        and not payment_link_active(order)
        and order.payment_status == PaymentStatus.PENDING
    ):
        order.payment_status = PaymentStatus.FAILED
        order.updated_at = utc_now()
        logger.info("Payment link for order %s expired", order.order_number)
        return True
    return False


def ensure_link_can_be_generated(order: Order) -> None:
    if order.status != OrderStatus.DRAFT:
        raise InvalidStateError("Order must be draft to generate a payment link")
    if payment_link_active(order):
        raise InvalidStateError("Order already has an active payment link")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class PaymentOrchestrator:
    def __init__(
        self,
        settings: Settings,
        *,
        stripe_client_factory: StripeClientFactory = default_stripe_client,
        shopify_client_factory: ShopifyClientFactory = default_shopify_client,
    ):
        self.settings = settings
        self.stripe_client_factory = stripe_client_factory
        self.shopify_client_factory = shopify_client_factory

    def provider_chain(
        self, connection: Optional[MarketplaceConnection]
    ) -> list[PaymentProvider]:
        return build_provider_chain(
            connection,
            self.settings,
            stripe_client_factory=self.stripe_client_factory,
            shopify_client_factory=self.shopify_client_factory,
        )

    async def create_payment_link(
        self, db: AsyncSession, *, actor: AuthUser, order_id: uuid.UUID
    ) -> PaymentLinkResult:
        await require_order_access(db, actor, order_id)

        # 1. Validate under lock, then release it before calling out
        order = await lock_order(db, order_id)
        expire_stale_link(order)
        ensure_link_can_be_generated(order)
        if not order.items:
            raise ValidationError("Order has no items")

        connection = await get_marketplace_connection(db, order.business_id)
        chain = self.provider_chain(connection)
        if not chain:
            await db.commit()
            raise NoPaymentProviderError("No payment provider configured")

        request = PaymentRequest.from_order(order)
        await db.commit()

        # 2. Try providers in order
        artifact: Optional[PaymentArtifact] = None
        fallback_reason: Optional[str] = None
        last_error: Optional[PaymentProviderError] = None
        for provider in chain:
            try:
                artifact = await provider.create_payment_artifact(request)
                break
            except PaymentProviderError as exc:
                last_error = exc
                fallback_reason = exc.message
                logger.warning(
                    "Payment provider %s failed for order %s: %s",
                    provider.kind.value,
                    request.order_number,
                    exc.message,
                )

        if artifact is None:
            raise PaymentProviderError(
                f"Payment could not be started: {last_error.message}"
                if last_error
                else "Payment could not be started"
            )
        if artifact.provider == chain[0].kind:
            fallback_reason = None

        # 3. Re-validate and record
        order = await lock_order(db, order_id)
        try:
            ensure_link_can_be_generated(order)
        except InvalidStateError:
            await db.commit()
            logger.warning(
                "Order %s changed while creating %s link; discarding %s",
                order.order_number,
                artifact.provider.value,
                artifact.external_id,
            )
            raise

        apply_payment_artifact(order, artifact)
        order.payment_method = PaymentMethod.CARD
        await db.commit()

        logger.info(
            "Created %s payment link for order %s (external=%s)",
            artifact.provider.value,
            order.order_number,
            artifact.external_id,
        )
        return PaymentLinkResult(
            order=order, artifact=artifact, fallback_reason=fallback_reason
        )


def get_payment_orchestrator() -> PaymentOrchestrator:
    """FastAPI dependency."""
    return PaymentOrchestrator(get_settings())
