"""Transition guards for the order and payment state machines.

Order status::

    pending -> confirmed -> processing -> shipped -> delivered
    (any non-terminal) -> cancelled

Payment status::

    pending -> completed -> refunded
    pending -> failed -> pending        (retry)
    failed -> completed                 (retry verified directly)

The order guard runs in the order service before a fulfilment change; the
payment guard runs in ``OrderDjangoRepository.apply_transition`` for every
write that moves ``payment_status``.
"""

from __future__ import annotations

from modules.orders.constants import (
    PAYMENT_TRANSITIONS,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentStatus,
)
from modules.orders.exceptions import InvalidOrderStatus


def can_transition(current: str, new: str) -> bool:
    return new in VALID_TRANSITIONS.get(current, set())


def ensure_transition(order_id, current: str, new: str) -> None:
    """Raise ``InvalidOrderStatus`` unless ``current -> new`` is allowed."""
    if new not in OrderStatus.values:
        raise InvalidOrderStatus(
            f"Unknown order status '{new}'.",
            order_id=order_id,
            new_status=new,
        )
    if not can_transition(current, new):
        raise InvalidOrderStatus(
            f"Cannot transition order from '{current}' to '{new}'.",
            order_id=order_id,
            current_status=current,
            new_status=new,
        )


def ensure_payment_transition(order_id, current: str, new: str) -> None:
    if new not in PaymentStatus.values or new not in PAYMENT_TRANSITIONS.get(current, set()):
        raise InvalidOrderStatus(
            f"Cannot transition payment from '{current}' to '{new}'.",
            order_id=order_id,
            current_payment_status=current,
            new_payment_status=new,
        )
