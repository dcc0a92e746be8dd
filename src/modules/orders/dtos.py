"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers)
and the Service layer.  DTOs are immutable (``frozen=True``).

- ``CreateOrderItemDTO`` / ``CreateOrderDTO``: order creation input.
- ``BulkStatusUpdateDTO``: input of the best-effort bulk status change.
- ``ShippingDetailsDTO``: typed carrier/tracking payload.
- ``PaymentDetailsDTO``: typed view over the payment columns of an order.
- ``OrderSummaryDTO``: what notifications and events carry.
- ``BulkUpdateResultDTO``: outcome of a bulk status change.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from modules.orders.constants import OrderStatus, PaymentMethod

if TYPE_CHECKING:
    from modules.orders.models import Order


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class CreateOrderItemDTO(BaseModel):
    """Immutable DTO for a single order line in a creation request.

    The client sends ``product_id``, ``quantity`` and optionally the
    ``size``/``color`` variant.  Prices are resolved by the Service Layer
    from the catalog snapshot.  Lines without a variant are not tracked by
    the stock ledger.
    """

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v

    @field_validator("size", "color")
    @classmethod
    def blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode="after")
    def variant_is_complete(self):
        if (self.size is None) != (self.color is None):
            raise ValueError("Size and color must be provided together.")
        return self

    @property
    def has_variant(self) -> bool:
        return self.size is not None and self.color is not None

    @property
    def line_key(self) -> Tuple[UUID, Optional[str], Optional[str]]:
        return (self.product_id, self.size, self.color)


class CreateOrderDTO(BaseModel):
    """Immutable DTO for order creation requests.

    Validates:
    - ``items`` must contain at least one item.
    - The same ``(product, size, color)`` line may appear only once.
    """

    model_config = ConfigDict(frozen=True)

    items: List[CreateOrderItemDTO]
    shipping_address_id: str = Field(min_length=1, max_length=64)
    payment_method: str = PaymentMethod.COD
    idempotency_key: Optional[str] = Field(default=None, max_length=255)

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[CreateOrderItemDTO]
    ) -> List[CreateOrderItemDTO]:
        if not v:
            raise ValueError("Order must have at least one item.")
        return v

    @field_validator("payment_method")
    @classmethod
    def payment_method_must_be_known(cls, v: str) -> str:
        value = v.upper()
        if value not in PaymentMethod.values:
            raise ValueError(f"Unsupported payment method '{v}'.")
        return value

    @model_validator(mode="after")
    def no_duplicate_lines(self):
        """Prevent the same variant line from appearing twice."""
        keys = [item.line_key for item in self.items]
        if len(keys) != len(set(keys)):
            raise ValueError("Duplicate order lines are not allowed in the same order.")
        return self


class ShippingDetailsDTO(BaseModel):
    """Carrier/tracking information attached when an order ships."""

    model_config = ConfigDict(frozen=True)

    carrier: str = Field(min_length=1, max_length=100)
    tracking_number: str = Field(min_length=1, max_length=100)
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class BulkStatusUpdateDTO(BaseModel):
    """Same status change applied independently to many orders."""

    model_config = ConfigDict(frozen=True)

    order_ids: List[UUID]
    new_status: str
    note: str = ""

    @field_validator("order_ids")
    @classmethod
    def order_ids_must_not_be_empty(cls, v: List[UUID]) -> List[UUID]:
        if not v:
            raise ValueError("At least one order id is required.")
        return list(dict.fromkeys(v))

    @field_validator("new_status")
    @classmethod
    def status_must_be_known(cls, v: str) -> str:
        value = v.lower()
        if value not in OrderStatus.values:
            raise ValueError(f"Unknown order status '{v}'.")
        return value


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class PaymentDetailsDTO(BaseModel):
    """Immutable typed view of an order's payment columns."""

    model_config = ConfigDict(frozen=True)

    transaction_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None

    @classmethod
    def from_entity(cls, order: Order) -> PaymentDetailsDTO:
        return cls(
            transaction_id=order.transaction_id,
            payment_intent_id=order.payment_intent_id,
            paid_at=order.paid_at,
            refund_id=order.refund_id,
            refund_amount=order.refund_amount,
            refunded_at=order.refunded_at,
            refund_reason=order.refund_reason,
        )


class OrderSummaryDTO(BaseModel):
    """Snapshot of an order handed to events and the notifier."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    order_number: str
    owner_id: str
    status: str
    payment_status: str
    payment_method: str
    total_amount: Decimal

    @classmethod
    def from_entity(cls, order: Order) -> OrderSummaryDTO:
        return cls(
            id=order.id,
            order_number=order.order_number,
            owner_id=order.owner_id,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            total_amount=order.total_amount,
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class BulkFailureDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: UUID
    code: str
    detail: str


class BulkUpdateResultDTO(BaseModel):
    """``matched``: orders found; ``modified``: orders actually transitioned."""

    model_config = ConfigDict(frozen=True)

    matched: int
    modified: int
    failures: List[BulkFailureDTO] = []
