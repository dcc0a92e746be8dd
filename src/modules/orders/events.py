"""Domain events for the Orders bounded context.

Every event carries ``OrderSummaryDTO.to_payload()`` as its payload; the
``*_changed`` events add ``old_status`` / ``new_status``.
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Raised when an order is created."""


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    """Raised when an order is cancelled."""


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Raised when an order status changes (other than cancellation)."""


@dataclass(frozen=True)
class PaymentCompleted(DomainEvent):
    """Raised when a payment is verified."""


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """Raised when the verifier rejects a payment."""


@dataclass(frozen=True)
class OrderRefunded(DomainEvent):
    """Raised when a payment is refunded."""
