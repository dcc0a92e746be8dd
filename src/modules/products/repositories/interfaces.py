"""Product repository interfaces.

``IProductRepository`` extends ``IRepository[Product]`` with the live
product listing; ``ICatalogReader`` is the narrow contract order creation
depends on: immutable product snapshots, read at order time only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.products.dtos import ProductSnapshot
    from modules.products.models import Product


class ICatalogReader(ABC):
    """Supplies frozen product data to the order service."""

    @abstractmethod
    def get_snapshots(self, product_ids: Iterable[UUID]) -> Dict[UUID, ProductSnapshot]:
        """Return snapshots keyed by product id; unknown ids are omitted."""


class IProductRepository(IRepository["Product"], ICatalogReader):
    """Repository contract for the Product aggregate."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[Product]:
        """List live (not soft-deleted) products with optional filters."""
