"""Unit tests for payment provider selection, fallback and link rules."""

from datetime import timedelta

import pytest
from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_utc, utc_now
from services.orders_service.errors import (
    InvalidStateError,
    NoPaymentProviderError,
    PaymentProviderError,
    ValidationError,
)
from services.orders_service.models import (
    DeliveryType,
    OrderStatus,
    PaymentMethod,
    PaymentProviderKind,
    PaymentStatus,
)
from services.orders_service.payments.orchestrator import (
    PaymentOrchestrator,
    build_provider_chain,
)
from services.orders_service.payments.providers import (
    HostedCheckoutProvider,
    MarketplaceProvider,
)
from services.orders_service.schemas import OrderItemInput
from services.orders_service.services.orders import add_item, set_delivery_info
from tests.factories import ConnectionFactory, ProductFactory
from tests.fakes import FakeShopifyClient, FakeStripeClient


def _orchestrator(stripe_client, shopify_client, **overrides):
    settings = get_settings().model_copy(update=overrides)
    return PaymentOrchestrator(
        settings,
        stripe_client_factory=lambda: stripe_client,
        shopify_client_factory=lambda connection: shopify_client,
    )


# ---------------------------------------------------------------------------
# build_provider_chain
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_chain_prefers_marketplace_then_hosted_checkout():
    connection = ConnectionFactory.create()

    chain = build_provider_chain(
        connection,
        get_settings(),
        stripe_client_factory=FakeStripeClient,
        shopify_client_factory=lambda c: FakeShopifyClient(),
    )

    assert [type(p) for p in chain] == [MarketplaceProvider, HostedCheckoutProvider]


@pytest.mark.unit
def test_chain_skips_inactive_connection_and_missing_stripe_key():
    connection = ConnectionFactory.create(is_active=False)
    settings = get_settings().model_copy(update={"STRIPE_SECRET_KEY": ""})

    assert build_provider_chain(connection, settings) == []


# ---------------------------------------------------------------------------
# Hosted checkout
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stripe_link_for_business_without_marketplace(
    db_session, owner, draft_order, orchestrator, stripe_client
):
    result = await orchestrator.create_payment_link(
        db_session, actor=owner, order_id=draft_order.id
    )

    order = result.order
    assert result.artifact.provider == PaymentProviderKind.STRIPE
    assert result.fallback_reason is None
    assert order.payment_provider == PaymentProviderKind.STRIPE
    assert order.payment_method == PaymentMethod.CARD
    assert order.payment_status == PaymentStatus.PENDING
    assert order.status == OrderStatus.DRAFT
    assert order.stripe_session_id == result.artifact.external_id
    assert order.payment_link_url.startswith("https://checkout.stripe.com/")

    expected_expiry = utc_now() + timedelta(hours=24)
    assert abs(ensure_utc(order.payment_link_expires_at) - expected_expiry) < timedelta(minutes=1)

    call = stripe_client.calls[0]
    assert call["line_items"] == [
        {
            "price_data": {
                "currency": "usd",
                "product_data": {"name": "Croissant - Butter"},
                "unit_amount": 500,
            },
            "quantity": 2,
        }
    ]
    assert call["metadata"] == {
        "orderId": str(draft_order.id),
        "orderNumber": "ORD-ACM-000001",
    }
    assert call["success_url"] == (
        f"https://shop.example.com/orders/{draft_order.id}?payment=success"
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stripe_link_charges_delivery_fee(
    db_session, owner, draft_order, orchestrator, stripe_client
):
    await set_delivery_info(
        db_session,
        actor=owner,
        order_id=draft_order.id,
        delivery_type=DeliveryType.DELIVERY,
        delivery_address="12 Main St",
        delivery_fee=300,
    )

    await orchestrator.create_payment_link(db_session, actor=owner, order_id=draft_order.id)

    delivery_line = stripe_client.calls[0]["line_items"][-1]
    assert delivery_line["price_data"]["product_data"]["name"] == "Delivery"
    assert delivery_line["price_data"]["unit_amount"] == 300


# ---------------------------------------------------------------------------
# Marketplace
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_marketplace_invoice_preferred(
    db_session, owner, draft_order, connection, orchestrator, stripe_client, shopify_client
):
    result = await orchestrator.create_payment_link(
        db_session, actor=owner, order_id=draft_order.id
    )

    order = result.order
    assert result.artifact.provider == PaymentProviderKind.SHOPIFY
    assert order.shopify_draft_order_id == result.artifact.external_id
    assert order.shopify_order_number == result.artifact.external_number
    assert order.payment_link_url.startswith("https://shop.example.com/invoices/")
    assert order.payment_link_expires_at is not None
    assert order.stripe_session_id is None
    assert stripe_client.calls == []

    payload = shopify_client.draft_payloads[0]["draft_order"]
    assert payload["line_items"] == [{"variant_id": 111, "quantity": 2}]
    assert payload["tags"] == "echo,ORD-ACM-000001"
    assert payload["note"] == "Echo Order: ORD-ACM-000001"
    assert payload["customer"] == {"first_name": "Dana", "phone": "+15550100"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_marketplace_error_falls_back_to_stripe(
    db_session, owner, draft_order, connection, stripe_client
):
    orchestrator = _orchestrator(stripe_client, FakeShopifyClient(error="Invalid variant"))

    result = await orchestrator.create_payment_link(
        db_session, actor=owner, order_id=draft_order.id
    )

    assert result.artifact.provider == PaymentProviderKind.STRIPE
    assert "Invalid variant" in result.fallback_reason
    assert result.order.shopify_draft_order_id is None
    assert result.order.stripe_session_id is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unmapped_items_are_reported_as_skipped(
    db_session, owner, business, draft_order, connection, orchestrator
):
    manual = ProductFactory.create(business_id=business.id, name="Gift card", price=2000)
    db_session.add(manual)
    await db_session.commit()
    await add_item(db_session, actor=owner, order_id=draft_order.id, product_id=manual.id)

    result = await orchestrator.create_payment_link(
        db_session, actor=owner, order_id=draft_order.id
    )

    assert result.artifact.provider == PaymentProviderKind.SHOPIFY
    assert result.artifact.skipped_items == ["Gift card (manual product, no Shopify variant)"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_no_mappable_items_falls_back_to_stripe(
    db_session, owner, business, connection, orchestrator, stripe_client, shopify_client
):
    from services.orders_service.services.orders import create_order

    manual = ProductFactory.create(business_id=business.id, name="Gift card", price=2000)
    db_session.add(manual)
    await db_session.commit()
    order = await create_order(
        db_session,
        actor=owner,
        business_id=business.id,
        conversation_id="conv-2",
        contact_phone="+15550100",
        items=[OrderItemInput(product_id=manual.id)],
    )

    result = await orchestrator.create_payment_link(db_session, actor=owner, order_id=order.id)

    assert result.artifact.provider == PaymentProviderKind.STRIPE
    assert result.fallback_reason.startswith("No Shopify products to order")
    assert shopify_client.draft_payloads == []


# ---------------------------------------------------------------------------
# Failures and link rules
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_no_provider_configured(db_session, owner, draft_order, stripe_client, shopify_client):
    orchestrator = _orchestrator(stripe_client, shopify_client, STRIPE_SECRET_KEY="")

    with pytest.raises(NoPaymentProviderError) as exc_info:
        await orchestrator.create_payment_link(db_session, actor=owner, order_id=draft_order.id)

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
@pytest.mark.unit
async def test_all_providers_failing(db_session, owner, draft_order, connection):
    orchestrator = _orchestrator(
        FakeStripeClient(error="Your card was declined"),
        FakeShopifyClient(error="Shop is frozen"),
    )

    with pytest.raises(PaymentProviderError) as exc_info:
        await orchestrator.create_payment_link(db_session, actor=owner, order_id=draft_order.id)

    assert exc_info.value.message.startswith("Payment could not be started")
    assert draft_order.payment_link_url is None
    assert draft_order.payment_provider is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_active_link_blocks_second_link(db_session, owner, draft_order, orchestrator):
    await orchestrator.create_payment_link(db_session, actor=owner, order_id=draft_order.id)

    with pytest.raises(InvalidStateError) as exc_info:
        await orchestrator.create_payment_link(db_session, actor=owner, order_id=draft_order.id)

    assert exc_info.value.message == "Order already has an active payment link"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expired_link_can_be_replaced(db_session, owner, draft_order, orchestrator):
    first = await orchestrator.create_payment_link(
        db_session, actor=owner, order_id=draft_order.id
    )
    first_session = first.order.stripe_session_id
    draft_order.payment_link_expires_at = utc_now() - timedelta(minutes=1)
    await db_session.commit()

    second = await orchestrator.create_payment_link(
        db_session, actor=owner, order_id=draft_order.id
    )

    assert second.order.stripe_session_id != first_session
    assert second.order.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_link_requires_items(db_session, owner, draft_order, orchestrator):
    draft_order.items.clear()
    await db_session.commit()

    with pytest.raises(ValidationError):
        await orchestrator.create_payment_link(db_session, actor=owner, order_id=draft_order.id)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_link_requires_draft(db_session, owner, draft_order, orchestrator):
    draft_order.status = OrderStatus.CONFIRMED
    await db_session.commit()

    with pytest.raises(InvalidStateError) as exc_info:
        await orchestrator.create_payment_link(db_session, actor=owner, order_id=draft_order.id)

    assert exc_info.value.message == "Order must be draft to generate a payment link"
