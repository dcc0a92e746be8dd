"""Catalog routes.

    GET    products/                browse (anonymous)
    GET    products/{id}/           retrieve (anonymous)
    POST   products/stock/adjust/   best-effort stock adjustment (staff)
"""

from __future__ import annotations

from rest_framework.routers import SimpleRouter

from modules.products.views import ProductViewSet

router = SimpleRouter()
router.register("products", ProductViewSet, basename="product")

urlpatterns = router.urls
