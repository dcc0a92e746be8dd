"""Product catalog and per-variant stock ledger models.

Business rules implemented:
- SKU must be unique in the system (normalised to uppercase).
- Inactive or soft-deleted products cannot be ordered (enforced by the
  catalog reader / order service).
- Price must be greater than zero; a discount price, when set, must not
  exceed the list price.
- Stock is tracked per variant (size × color); a variant's quantity can
  never go negative (CHECK constraint + conditional updates in the ledger).
- ``(product, size, color)`` is unique: the variants of a product form a
  mapping keyed by the pair.
"""

from __future__ import annotations

from decimal import Decimal

import structlog
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import BaseModel, SoftDeleteModel

logger = structlog.get_logger(__name__)


class ProductStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"


class Product(SoftDeleteModel):
    """Product aggregate root.

    Stock lives in the related ``StockVariant`` rows (``product.stock``),
    mutated exclusively through ``modules.products.ledger.StockLedger``.
    """

    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    discount_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        default=None,
    )
    status = models.CharField(
        max_length=20,
        choices=ProductStatus.choices,
        default=ProductStatus.ACTIVE,
    )

    class Meta:
        db_table = "products"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["status"], name="products_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gt=0),
                name="products_price_positive",
            ),
        ]

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    @property
    def effective_price(self) -> Decimal:
        """Price actually charged: the discount price when one applies."""
        if self.discount_price and self.discount_price < self.price:
            return self.discount_price
        return self.price

    @property
    def is_available(self) -> bool:
        return self.status == ProductStatus.ACTIVE and not self.is_deleted

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def clean(self) -> None:
        super().clean()
        if self.sku:
            self.sku = self.sku.strip().upper()
        if self.price is not None and self.price <= 0:
            raise ValidationError({"price": "Price must be greater than zero."})
        if (
            self.discount_price is not None
            and self.price is not None
            and self.discount_price > self.price
        ):
            raise ValidationError(
                {"discount_price": "Discount price cannot exceed the list price."}
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args, **kwargs) -> None:
        is_new = self._state.adding
        if self.sku:
            self.sku = self.sku.strip().upper()
        super().save(*args, **kwargs)
        if is_new:
            logger.info(
                "product_created",
                product_id=str(self.id),
                sku=self.sku,
                name=self.name,
            )

    def __str__(self) -> str:
        return f"{self.sku} - {self.name}"


class StockVariant(BaseModel):
    """Stock record of one size/color combination of a product.

    Never write ``quantity`` directly: go through the ledger so every change
    is a single conditional read-modify-write statement.
    """

    product = models.ForeignKey(
        "products.Product",
        on_delete=models.CASCADE,
        related_name="stock",
    )
    size = models.CharField(max_length=20)
    color = models.CharField(max_length=40)
    quantity = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "stock_variants"
        ordering = ["size", "color"]
        constraints = [
            models.UniqueConstraint(
                fields=["product", "size", "color"],
                name="stock_variants_unique_pair",
            ),
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0),
                name="stock_variants_quantity_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.product_id} {self.size}/{self.color}: {self.quantity}"
