"""Django ORM implementation of the Product repository / catalog reader.

Error handling follows the Null Object pattern: look-ups return ``None``
(or omit the entry) instead of raising; the Service Layer decides how a
missing product translates into a domain error.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db.models import QuerySet

from modules.products.dtos import ProductSnapshot
from modules.products.models import Product
from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


class ProductDjangoRepository(IProductRepository):
    """Concrete Product repository backed by Django ORM."""

    def get_by_id(self, id: str) -> Optional[Product]:
        """Retrieve a live product (with variants) by primary key.

        Returns ``None`` for non-existent, soft-deleted or invalid IDs.
        """
        try:
            return (
                Product.objects.alive()
                .prefetch_related("stock")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> QuerySet[Product]:
        """List live products with optional Django ORM look-ups.

        Examples of valid filters::

            {"status": "active"}
            {"name__icontains": "shirt"}
        """
        queryset = Product.objects.alive().prefetch_related("stock")
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    def get_snapshots(self, product_ids: Iterable[UUID]) -> Dict[UUID, ProductSnapshot]:
        """Snapshot every requested live product in two queries."""
        ids = list(dict.fromkeys(product_ids))
        products = Product.objects.alive().prefetch_related("stock").filter(id__in=ids)
        snapshots = {p.id: ProductSnapshot.from_entity(p) for p in products}
        logger.debug(
            "catalog.snapshots_read",
            requested=len(ids),
            found=len(snapshots),
        )
        return snapshots
