"""Unit tests for marketplace sync, payment confirmation and scheduling."""

import uuid

import pytest
from libs.common.currency import format_money
from services.orders_service.models import OrderStatus, PaymentMethod, PaymentStatus
from services.orders_service.scheduling import (
    TASK_CREATE_MARKETPLACE_ORDER,
    TASK_DECREMENT_INVENTORY,
    TASK_SEND_PAYMENT_CONFIRMATION,
    schedule_inventory_decrement,
)
from services.orders_service.services.orders import set_payment_method
from services.orders_service.tasks import (
    build_confirmation_text,
    create_marketplace_order,
    send_payment_confirmation,
)
from tests.fakes import (
    FailingTaskQueue,
    FakeShopifyClient,
    RecordingMessenger,
    RecordingTaskQueue,
)


async def _confirm_cash(db, actor, order, task_queue):
    return await set_payment_method(
        db,
        actor=actor,
        order_id=order.id,
        method=PaymentMethod.CASH,
        task_queue=task_queue,
    )


# ---------------------------------------------------------------------------
# create_marketplace_order
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cash_order_synced_as_paid_marketplace_order(
    db_session, owner, draft_order, connection, task_queue, shopify_client
):
    await _confirm_cash(db_session, owner, draft_order, task_queue)

    created = await create_marketplace_order(
        db_session, draft_order.id, shopify_client_factory=lambda c: shopify_client
    )

    assert created is True
    assert draft_order.shopify_order_id == "1001"
    assert draft_order.shopify_order_number == "#1001"
    body = shopify_client.order_payloads[0]["order"]
    assert body["financial_status"] == "paid"
    assert body["line_items"] == [{"variant_id": 111, "quantity": 2}]
    assert body["tags"] == "echo,ORD-ACM-000001"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_marketplace_sync_is_idempotent(
    db_session, owner, draft_order, connection, task_queue, shopify_client
):
    await _confirm_cash(db_session, owner, draft_order, task_queue)
    factory = lambda c: shopify_client  # noqa: E731

    assert await create_marketplace_order(db_session, draft_order.id, shopify_client_factory=factory)
    assert not await create_marketplace_order(
        db_session, draft_order.id, shopify_client_factory=factory
    )
    assert len(shopify_client.order_payloads) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_marketplace_sync_skips_draft_and_unconnected(
    db_session, owner, draft_order, task_queue, shopify_client
):
    factory = lambda c: shopify_client  # noqa: E731

    assert not await create_marketplace_order(db_session, draft_order.id, shopify_client_factory=factory)

    await _confirm_cash(db_session, owner, draft_order, task_queue)
    assert not await create_marketplace_order(db_session, draft_order.id, shopify_client_factory=factory)
    assert shopify_client.order_payloads == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_marketplace_sync_skips_orders_paid_through_shopify(
    db_session, draft_order, connection, shopify_client
):
    draft_order.status = OrderStatus.PAID
    draft_order.shopify_draft_order_id = "1001"
    await db_session.commit()

    assert not await create_marketplace_order(
        db_session, draft_order.id, shopify_client_factory=lambda c: shopify_client
    )
    assert shopify_client.order_payloads == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_marketplace_sync_failure_is_logged_not_raised(
    db_session, owner, draft_order, connection, task_queue
):
    """The order stays confirmed without a marketplace record."""
    await _confirm_cash(db_session, owner, draft_order, task_queue)
    failing = FakeShopifyClient(error="Not Found")

    created = await create_marketplace_order(
        db_session, draft_order.id, shopify_client_factory=lambda c: failing
    )

    assert created is False
    assert draft_order.status == OrderStatus.CONFIRMED
    assert draft_order.shopify_order_id is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_marketplace_sync_unknown_order(db_session, shopify_client):
    assert not await create_marketplace_order(
        db_session, uuid.uuid4(), shopify_client_factory=lambda c: shopify_client
    )


# ---------------------------------------------------------------------------
# send_payment_confirmation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirmation_text(draft_order):
    assert build_confirmation_text(draft_order) == (
        "Thank you for your payment! Your order ORD-ACM-000001 has been confirmed. "
        "Total paid: $10.00. "
        "We'll start preparing it right away!"
    )

    draft_order.shopify_order_number = "#1042"
    assert "Shopify order reference: #1042." in build_confirmation_text(draft_order)


@pytest.mark.unit
def test_format_money_uses_symbol_or_code():
    assert format_money(1050, "usd") == "$10.50"
    assert format_money(99, "EUR") == "€0.99"
    assert format_money(250000, "JPY") == "2500.00 JPY"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirmation_sent_for_paid_order(db_session, draft_order):
    draft_order.status = OrderStatus.PAID
    draft_order.payment_status = PaymentStatus.PAID
    await db_session.commit()
    messenger = RecordingMessenger()

    assert await send_payment_confirmation(db_session, draft_order.id, sender=messenger)

    conversation_id, text = messenger.messages[0]
    assert conversation_id == "conv-1"
    assert "ORD-ACM-000001" in text


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirmation_failure_keeps_payment(db_session, draft_order):
    draft_order.status = OrderStatus.PAID
    draft_order.payment_status = PaymentStatus.PAID
    await db_session.commit()
    messenger = RecordingMessenger(error=ConnectionError("messaging down"))

    assert not await send_payment_confirmation(db_session, draft_order.id, sender=messenger)
    assert draft_order.status == OrderStatus.PAID
    assert draft_order.payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirmation_skipped_for_unpaid_order(db_session, draft_order):
    messenger = RecordingMessenger()

    assert not await send_payment_confirmation(db_session, draft_order.id, sender=messenger)
    assert messenger.messages == []


# ---------------------------------------------------------------------------
# Scheduling and worker registration
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_schedule_dedupes_by_job_id():
    queue = RecordingTaskQueue()
    order_id = uuid.uuid4()

    assert await schedule_inventory_decrement(queue, order_id) is True
    assert await schedule_inventory_decrement(queue, order_id) is False
    assert queue.jobs == [(TASK_DECREMENT_INVENTORY, (str(order_id),))]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_enqueue_failure_is_swallowed():
    assert await schedule_inventory_decrement(FailingTaskQueue(), uuid.uuid4()) is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_enqueue_failure_does_not_undo_confirmation(db_session, owner, draft_order):
    order = await _confirm_cash(db_session, owner, draft_order, FailingTaskQueue())

    assert order.status == OrderStatus.CONFIRMED


@pytest.mark.unit
def test_worker_registers_scheduled_task_names():
    from services.orders_service.worker import WorkerSettings

    names = {fn.__name__ for fn in WorkerSettings.functions}

    assert {
        TASK_DECREMENT_INVENTORY,
        TASK_CREATE_MARKETPLACE_ORDER,
        TASK_SEND_PAYMENT_CONFIRMATION,
    } <= names
    assert WorkerSettings.cron_jobs
