"""Unit tests for order number formatting and allocation."""

import pytest
from services.orders_service.models import Order
from services.orders_service.services.order_numbers import (
    allocate_order_number,
    business_prefix,
    format_order_number,
    parse_order_number,
)
from tests.factories import BusinessFactory


@pytest.mark.unit
@pytest.mark.parametrize(
    "name, expected",
    [
        ("Acme Bakery", "ACM"),
        ("zo's cafe", "ZOS"),
        ("7-Eleven", "ELE"),
        ("AB", "BIZ"),
        ("123", "BIZ"),
        ("", "BIZ"),
    ],
)
def test_business_prefix(name, expected):
    assert business_prefix(name) == expected


@pytest.mark.unit
def test_format_and_parse_round_trip():
    assert format_order_number("ACM", 42) == "ORD-ACM-000042"
    assert parse_order_number("ORD-ACM-000042") == ("ACM", 42)
    assert parse_order_number("ORD-ACM-42") is None
    assert parse_order_number("#1001") is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_first_allocation_starts_at_one(db_session, business):
    """A business without orders gets sequence 000001."""
    number = await allocate_order_number(
        db_session, business_id=business.id, business_name=business.name
    )
    await db_session.commit()

    assert number == "ORD-ACM-000001"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_allocations_are_sequential(db_session, business):
    numbers = []
    for _ in range(3):
        numbers.append(
            await allocate_order_number(
                db_session, business_id=business.id, business_name=business.name
            )
        )
        await db_session.commit()

    assert numbers == ["ORD-ACM-000001", "ORD-ACM-000002", "ORD-ACM-000003"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_counter_seeds_from_existing_orders(db_session, business):
    """Orders issued before the counter existed are not reused."""
    db_session.add(
        Order(
            business_id=business.id,
            conversation_id="legacy",
            order_number="ORD-ACM-000041",
            contact_phone="+15550100",
        )
    )
    await db_session.commit()

    number = await allocate_order_number(
        db_session, business_id=business.id, business_name=business.name
    )

    assert number == "ORD-ACM-000042"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_sequences_are_scoped_per_business(db_session, business):
    other = BusinessFactory.create(name="Acme Hardware")
    db_session.add(other)
    await db_session.commit()

    first = await allocate_order_number(
        db_session, business_id=business.id, business_name=business.name
    )
    second = await allocate_order_number(
        db_session, business_id=other.id, business_name=other.name
    )

    assert first == "ORD-ACM-000001"
    assert second == "ORD-ACM-000001"


@pytest.mark.unit
def test_sequences_past_six_digits_still_parse():
    assert format_order_number("ACM", 1_000_000) == "ORD-ACM-1000000"
    assert parse_order_number("ORD-ACM-1000000") == ("ACM", 1_000_000)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_counter_seed_sees_seven_digit_numbers(db_session, business):
    for sequence in (999_999, 1_000_000):
        db_session.add(
            Order(
                business_id=business.id,
                conversation_id=f"legacy-{sequence}",
                order_number=format_order_number("ACM", sequence),
                contact_phone="+15550100",
            )
        )
    await db_session.commit()

    number = await allocate_order_number(
        db_session, business_id=business.id, business_name=business.name
    )

    assert number == "ORD-ACM-1000001"
