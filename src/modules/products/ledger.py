"""Stock ledger: the single write path for variant quantities.

Every change is one conditional statement::

    UPDATE stock_variants
       SET quantity = quantity + :delta
     WHERE product_id = :p AND size = :s AND color = :c
       AND quantity >= -:delta          -- only for decrements

so concurrent adjustments of the same variant serialise on the row and can
neither lose updates nor drive the quantity below zero.  When no row
matches, a follow-up read tells ``VariantNotFound`` from
``InsufficientStock``.

Batches are an unordered set of independent per-variant operations, not a
cross-variant transaction.  In non-strict mode each adjustment runs in its
own savepoint and failures are reported per request; strict mode raises the
first failure so the caller's unit of work aborts as a whole.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List
from uuid import UUID

import structlog
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from modules.products.dtos import (
    StockAdjustmentDTO,
    StockAdjustmentResultDTO,
    StockBatchResultDTO,
)
from modules.products.exceptions import InsufficientStock, VariantNotFound
from modules.products.models import StockVariant

if TYPE_CHECKING:
    from modules.core.transactions import UnitOfWork

logger = structlog.get_logger(__name__)


class StockLedger:
    """Atomic increment/decrement of ``StockVariant`` quantities."""

    def adjust_stock(
        self,
        uow: UnitOfWork,
        product_id: UUID,
        size: str,
        color: str,
        delta: int,
    ) -> None:
        """Apply *delta* to one variant atomically.

        Raises:
            VariantNotFound: ``(size, color)`` does not exist for the product.
            InsufficientStock: ``delta < 0`` and the result would be negative.
        """
        if delta == 0:
            raise ValueError("Stock delta must not be zero.")
        uow.checkpoint("adjust_stock")

        variant = StockVariant.objects.filter(
            product_id=product_id, size=size, color=color
        )
        guarded = variant if delta > 0 else variant.filter(quantity__gte=-delta)
        updated = guarded.update(
            quantity=F("quantity") + delta, updated_at=timezone.now()
        )

        log = logger.bind(
            product_id=str(product_id), size=size, color=color, delta=delta
        )
        if updated:
            log.info("stock.adjusted")
            return

        available = variant.values_list("quantity", flat=True).first()
        if available is None:
            log.warning("stock.variant_not_found")
            raise VariantNotFound(
                f"Product {product_id} has no {size}/{color} variant.",
                product_id=product_id,
                size=size,
                color=color,
            )
        log.warning("stock.insufficient", available=available)
        raise InsufficientStock(
            f"Insufficient stock for product {product_id} ({size}/{color}): "
            f"requested {-delta}, available {available}.",
            product_id=product_id,
            size=size,
            color=color,
            requested=-delta,
            available=available,
        )

    def adjust_stock_batch(
        self,
        uow: UnitOfWork,
        requests: Iterable[StockAdjustmentDTO],
        strict: bool = False,
    ) -> StockBatchResultDTO:
        """Apply many independent adjustments.

        Requests are processed in a stable ``(product, size, color)`` order
        so concurrent batches lock variant rows in the same sequence.
        """
        results: List[StockAdjustmentResultDTO] = []

        for request in sorted(requests, key=lambda r: r.variant_key):
            if strict:
                self.adjust_stock(
                    uow,
                    request.product_id,
                    request.size,
                    request.color,
                    request.quantity_change,
                )
                results.append(_result(request, applied=True))
                continue

            try:
                with transaction.atomic(using=uow.using):
                    self.adjust_stock(
                        uow,
                        request.product_id,
                        request.size,
                        request.color,
                        request.quantity_change,
                    )
            except (InsufficientStock, VariantNotFound) as exc:
                results.append(
                    _result(request, applied=False, error_code=exc.code, detail=exc.message)
                )
            else:
                results.append(_result(request, applied=True))

        batch = StockBatchResultDTO(results=results)
        logger.info(
            "stock.batch_adjusted",
            strict=strict,
            requested=len(results),
            applied=batch.applied_count,
        )
        return batch


def _result(
    request: StockAdjustmentDTO,
    applied: bool,
    error_code: str | None = None,
    detail: str | None = None,
) -> StockAdjustmentResultDTO:
    return StockAdjustmentResultDTO(
        product_id=request.product_id,
        size=request.size,
        color=request.color,
        quantity_change=request.quantity_change,
        applied=applied,
        error_code=error_code,
        detail=detail,
    )
