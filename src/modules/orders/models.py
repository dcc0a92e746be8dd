"""Order, OrderItem, and OrderStatusHistory models.

Business rules implemented:
- Invalid status transitions are rejected (``state_machine``); every
  accepted transition appends exactly one history row in the same
  unit of work (repository layer).
- Status history is append-only: rows refuse updates and deletes.
- After creation an order is only mutated through ``compare_and_set``
  (optimistic concurrency on ``version``).
- Idempotency via the ``idempotency_key`` unique constraint.
- Order number auto-generated as human-readable identifier.
- OrderItem snapshots the product name and prices at creation time.
- ``total_amount = items_total + shipping_charge + tax - discount`` is
  never negative (DB check constraint).
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Any, List

import structlog
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel, VersionedModel
from modules.orders.constants import (
    ORDER_NUMBER_MAX_RETRIES,
    TERMINAL_STATES,
    HistoryKind,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from modules.orders.dtos import PaymentDetailsDTO
from shared.domain.events import DomainEventMixin

logger = structlog.get_logger(__name__)


def _money(**kwargs: Any) -> models.DecimalField:
    return models.DecimalField(max_digits=12, decimal_places=2, **kwargs)


class Order(DomainEventMixin, VersionedModel):
    """Order aggregate root.

    ``order_number`` is a human-readable identifier auto-generated on first
    save (format: ``ORD-YYYYMMDD-XXXXXX``).  The UUIDv7 ``id`` is used for
    all internal references and API lookups.

    ``owner_id`` is the opaque id of the actor that placed the order, as
    forwarded by the gateway.  ``stock_released_at`` is set the one time the
    order's variant quantities are returned to the ledger (cancel or
    refund), so stock is never restored twice.
    """

    order_number = models.CharField(max_length=20, unique=True, editable=False)
    owner_id = models.CharField(max_length=64, db_index=True)
    shipping_address_id = models.CharField(max_length=64)
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.COD,
    )
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )

    items_total = _money(default=Decimal("0.00"))
    shipping_charge = _money(default=Decimal("0.00"))
    tax = _money(default=Decimal("0.00"))
    discount = _money(default=Decimal("0.00"))
    total_amount = _money(default=Decimal("0.00"))

    # Payment details
    transaction_id = models.CharField(max_length=255, null=True, blank=True)
    payment_intent_id = models.CharField(max_length=255, null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    refund_id = models.CharField(max_length=255, null=True, blank=True)
    refund_amount = _money(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    refund_reason = models.TextField(null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    shipping_details = models.JSONField(null=True, blank=True)
    stock_released_at = models.DateTimeField(null=True, blank=True)

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["payment_status"], name="orders_payment_status_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gte=0),
                name="orders_total_non_negative",
            ),
        ]

    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` if the order is in a terminal state."""
        return self.status in TERMINAL_STATES

    @property
    def stock_released(self) -> bool:
        return self.stock_released_at is not None

    # ------------------------------------------------------------------
    # Typed views
    # ------------------------------------------------------------------

    @property
    def payment_details(self) -> PaymentDetailsDTO:
        return PaymentDetailsDTO.from_entity(self)

    def variant_lines(self) -> List[OrderItem]:
        """Items whose ``(size, color)`` variant is tracked by the ledger."""
        return [item for item in self.items.all() if item.tracks_stock]

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        """Generate a human-readable order number: ``ORD-YYYYMMDD-XXXXXX``."""
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{now:%Y%m%d}-{suffix}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_number:
            for attempt in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_number()
                if not Order.objects.filter(order_number=candidate).exists():
                    self.order_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_number after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status}/{self.payment_status})"


class OrderItem(BaseModel):
    """Line item: a frozen snapshot of a catalog product.

    ``unit_price`` / ``discount_unit_price`` are copied from the product at
    purchase time and never follow later catalog changes.  ``subtotal`` is
    ``quantity * effective_unit_price``, recalculated on save.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = _money()
    discount_unit_price = _money(null=True, blank=True)
    size = models.CharField(max_length=20, blank=True, default="")
    color = models.CharField(max_length=40, blank=True, default="")
    subtotal = _money(editable=False)

    class Meta:
        db_table = "order_items"
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="order_items_quantity_positive",
            ),
        ]

    @property
    def effective_unit_price(self) -> Decimal:
        if self.discount_unit_price and self.discount_unit_price < self.unit_price:
            return self.discount_unit_price
        return self.unit_price

    @property
    def tracks_stock(self) -> bool:
        return bool(self.size and self.color)

    def save(self, *args: Any, **kwargs: Any) -> None:
        self.subtotal = self.quantity * self.effective_unit_price
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        variant = f" {self.size}/{self.color}" if self.tracks_stock else ""
        return f"{self.name}{variant} x{self.quantity}"


class AppendOnlyQuerySet(models.QuerySet):
    def update(self, **kwargs: Any) -> int:
        raise RuntimeError("Order status history is append-only.")

    def delete(self) -> tuple[int, dict[str, int]]:
        raise RuntimeError("Order status history is append-only.")


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for order and payment status transitions.

    ``kind`` tells which state machine moved.  ``actor_id`` is empty when
    the change was performed by the system.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    kind = models.CharField(
        max_length=10,
        choices=HistoryKind.choices,
        default=HistoryKind.ORDER,
    )
    old_status = models.CharField(max_length=20, null=True, blank=True)  # noqa: DJ01
    new_status = models.CharField(max_length=20)
    actor_id = models.CharField(max_length=64, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        db_table = "order_status_history"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["order", "created_at"],
                name="osh_order_created_idx",
            ),
        ]

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise RuntimeError("Order status history is append-only.")
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise RuntimeError("Order status history is append-only.")

    def __str__(self) -> str:
        return f"{self.order_id} [{self.kind}] {self.old_status} -> {self.new_status}"
