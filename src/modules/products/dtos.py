"""Product and stock DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
DTOs are immutable (``frozen=True``).

- ``ProductSnapshot``: what the catalog reader hands to order creation:
  the product data frozen at the moment it is read.
- ``StockAdjustmentDTO``: one stock mutation request (ephemeral).
- ``StockAdjustmentResultDTO`` / ``StockBatchResultDTO``: ledger outcomes.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

if TYPE_CHECKING:
    from modules.products.models import Product


# ---------------------------------------------------------------------------
# Catalog snapshots
# ---------------------------------------------------------------------------


class VariantSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: str
    color: str
    quantity: int


class ProductSnapshot(BaseModel):
    """Immutable view of a product at order time.

    Orders copy ``name`` and prices from the snapshot; they never re-read
    live product data afterwards.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID
    sku: str
    name: str
    price: Decimal
    discount_price: Optional[Decimal] = None
    is_available: bool
    variants: Tuple[VariantSnapshot, ...] = ()

    @property
    def effective_price(self) -> Decimal:
        if self.discount_price and self.discount_price < self.price:
            return self.discount_price
        return self.price

    def stock_for(self, size: str, color: str) -> Optional[int]:
        """Quantity of the ``(size, color)`` variant, ``None`` if absent."""
        for variant in self.variants:
            if variant.size == size and variant.color == color:
                return variant.quantity
        return None

    @classmethod
    def from_entity(cls, product: Product) -> ProductSnapshot:
        """Build a snapshot; assumes ``stock`` is prefetched."""
        return cls(
            id=product.id,
            sku=product.sku,
            name=product.name,
            price=product.price,
            discount_price=product.discount_price,
            is_available=product.is_available,
            variants=tuple(
                VariantSnapshot(size=v.size, color=v.color, quantity=v.quantity)
                for v in product.stock.all()
            ),
        )


# ---------------------------------------------------------------------------
# Stock mutations
# ---------------------------------------------------------------------------


class StockAdjustmentDTO(BaseModel):
    """A single stock mutation request.

    ``quantity_change`` is negative for a reservation (order placement) and
    positive for a restoration (refund / cancellation).
    """

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    size: str
    color: str
    quantity_change: int

    @field_validator("quantity_change")
    @classmethod
    def change_must_not_be_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity_change must not be zero.")
        return v

    @property
    def variant_key(self) -> Tuple[str, str, str]:
        return (str(self.product_id), self.size, self.color)


class StockAdjustmentResultDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: UUID
    size: str
    color: str
    quantity_change: int
    applied: bool
    error_code: Optional[str] = None
    detail: Optional[str] = None


class StockBatchResultDTO(BaseModel):
    """Outcome of a batch of independent per-variant adjustments."""

    model_config = ConfigDict(frozen=True)

    results: List[StockAdjustmentResultDTO]

    @property
    def applied_count(self) -> int:
        return sum(1 for r in self.results if r.applied)

    @property
    def failed(self) -> List[StockAdjustmentResultDTO]:
        return [r for r in self.results if not r.applied]

    @property
    def units_changed(self) -> int:
        return sum(abs(r.quantity_change) for r in self.results if r.applied)
