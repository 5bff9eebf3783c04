"""Order state machine and aggregate invariants.

    draft -> confirmed -> preparing -> ready -> delivered
    draft -> paid ------^
    draft | confirmed -> cancelled

Every status change goes through ``transition`` so illegal moves are
rejected in one place.
"""

from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import ensure_utc, utc_now
from services.orders_service.errors import InvalidStateError
from services.orders_service.models import Order, OrderStatus

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CONFIRMED: frozenset({OrderStatus.DRAFT}),
    OrderStatus.PAID: frozenset({OrderStatus.DRAFT}),
    OrderStatus.PREPARING: frozenset({OrderStatus.CONFIRMED, OrderStatus.PAID}),
    OrderStatus.READY: frozenset({OrderStatus.PREPARING}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.READY}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.DRAFT, OrderStatus.CONFIRMED}),
}

ITEM_MUTABLE_STATUSES = frozenset({OrderStatus.DRAFT})
DELIVERY_MUTABLE_STATUSES = frozenset({OrderStatus.DRAFT, OrderStatus.CONFIRMED})

# Statuses whose orders hold (or should hold) an inventory decrement
INVENTORY_COMMITTED_STATUSES = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.PAID,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.DELIVERED,
    }
)

# Paid or further along; cancelling these needs a manual refund
SETTLED_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.DELIVERED,
    }
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


def transition(order: Order, target: OrderStatus, message: Optional[str] = None) -> None:
    """Move ``order`` to ``target`` or raise InvalidStateError."""
    if not can_transition(order.status, target):
        raise InvalidStateError(
            message or f"Cannot move order from {order.status.value} to {target.value}"
        )
    order.status = target
    order.updated_at = utc_now()


def ensure_items_mutable(order: Order) -> None:
    if order.status not in ITEM_MUTABLE_STATUSES:
        raise InvalidStateError("Order must be draft to modify items")


def ensure_delivery_mutable(order: Order) -> None:
    if order.status not in DELIVERY_MUTABLE_STATUSES:
        raise InvalidStateError("Order must be draft or confirmed to change delivery")


def recompute_totals(order: Order) -> None:
    """subtotal = sum of line totals; total = subtotal + delivery fee."""
    for item in order.items:
        item.total_price = item.unit_price * item.quantity
    order.subtotal = sum(item.total_price for item in order.items)
    order.total = order.subtotal + (order.delivery_fee or 0)
    order.updated_at = utc_now()


def payment_link_active(order: Order, now: Optional[datetime] = None) -> bool:
    """True while a generated checkout/invoice link can still be paid."""
    if not order.payment_link_url or order.payment_link_expires_at is None:
        return False
    return ensure_utc(order.payment_link_expires_at) > (now or utc_now())
