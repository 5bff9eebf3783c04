"""Human-readable order numbers: ORD-<PREFIX>-<sequence zero-padded to 6 digits>.

Sequences come from a per-business counter row incremented under a row
lock, so concurrent order creation for one business cannot collide. The
counter is seeded from the highest number already issued the first time
it is needed.
"""

import re
import uuid
from typing import Optional

from libs.common.logging import get_logger
from services.orders_service.models import Order, OrderNumberCounter
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

DEFAULT_PREFIX = "BIZ"
SEQUENCE_WIDTH = 6
ORDER_NUMBER_RE = re.compile(r"^ORD-([A-Z]{3})-(\d{6,})$")


def business_prefix(business_name: str) -> str:
    """First three letters of the name, uppercased; BIZ when there are fewer."""
    letters = re.sub(r"[^a-zA-Z]", "", business_name or "")
    if len(letters) < 3:
        return DEFAULT_PREFIX
    return letters[:3].upper()


def format_order_number(prefix: str, sequence: int) -> str:
    return f"ORD-{prefix}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_order_number(value: str) -> Optional[tuple[str, int]]:
    match = ORDER_NUMBER_RE.match((value or "").strip())
    if not match:
        return None
    return match.group(1), int(match.group(2))


async def max_existing_sequence(
    db: AsyncSession, business_id: uuid.UUID, prefix: str
) -> int:
    """Scan the business's orders for the highest sequence under ``prefix``."""
    result = await db.execute(
        select(Order.order_number).where(
            Order.business_id == business_id,
            Order.order_number.like(f"ORD-{prefix}-%"),
        )
    )
    highest = 0
    for number in result.scalars():
        parsed = parse_order_number(number)
        if parsed and parsed[0] == prefix:
            highest = max(highest, parsed[1])
    return highest


async def _lock_counter(
    db: AsyncSession, business_id: uuid.UUID, prefix: str
) -> Optional[OrderNumberCounter]:
    result = await db.execute(
        select(OrderNumberCounter)
        .where(
            OrderNumberCounter.business_id == business_id,
            OrderNumberCounter.prefix == prefix,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def allocate_order_number(
    db: AsyncSession, *, business_id: uuid.UUID, business_name: str
) -> str:
    """Reserve the next order number for a business.

    Must run before any other write in the caller's transaction: losing the
    race to create the counter row rolls the transaction back.
    """
    prefix = business_prefix(business_name)

    counter = await _lock_counter(db, business_id, prefix)
    if counter is None:
        seed = await max_existing_sequence(db, business_id, prefix)
        counter = OrderNumberCounter(
            business_id=business_id, prefix=prefix, last_value=seed
        )
        db.add(counter)
        try:
            await db.flush()
        except IntegrityError:
            # Another request created the counter first; use theirs.
            await db.rollback()
            logger.info("Order counter for %s/%s created concurrently", business_id, prefix)
            counter = await _lock_counter(db, business_id, prefix)
            if counter is None:
                raise

    counter.last_value += 1
    await db.flush()
    return format_order_number(prefix, counter.last_value)
