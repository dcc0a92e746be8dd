"""Product service layer (Use Cases).

Read access to the catalog plus the staff-only bulk stock adjustment.
Stock is never written here directly: adjustments go through the
``StockLedger`` inside a ``UnitOfWork``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Sequence

import structlog

from modules.core.transactions import UnitOfWork
from modules.products.exceptions import ProductNotFound
from shared.domain.exceptions import Forbidden

if TYPE_CHECKING:
    from modules.core.authentication import Actor
    from modules.products.dtos import StockAdjustmentDTO, StockBatchResultDTO
    from modules.products.ledger import StockLedger
    from modules.products.models import Product
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


class ProductService:
    """Application service for Product use-cases.

    Receives an ``IProductRepository`` and the ``StockLedger`` via
    constructor injection (DIP).
    """

    def __init__(self, repository: IProductRepository, ledger: StockLedger) -> None:
        self._repo = repository
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_products(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[Product]:
        return self._repo.list(filters)

    def get_product(self, id: str) -> Product:
        """Retrieve a single live product by ID.

        Raises:
            ProductNotFound: if the product does not exist.
        """
        product = self._repo.get_by_id(id)
        if not product:
            raise ProductNotFound(f"Product {id} not found.", product_id=id)
        return product

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def adjust_stock(
        self,
        actor: Actor,
        adjustments: Sequence[StockAdjustmentDTO],
    ) -> StockBatchResultDTO:
        """Best-effort bulk stock adjustment (staff only).

        Each variant adjustment stands alone: a missing variant or an
        over-decrement is reported in the result and the others still apply.

        Raises:
            Forbidden: the actor is not staff.
        """
        if not actor.is_staff:
            raise Forbidden(
                "Only staff can adjust stock.", actor_id=actor.actor_id
            )

        with UnitOfWork("adjust_stock_batch") as uow:
            result = self._ledger.adjust_stock_batch(uow, adjustments, strict=False)

        logger.info(
            "product.stock_adjusted",
            actor_id=actor.actor_id,
            requested=len(adjustments),
            applied=result.applied_count,
        )
        return result
