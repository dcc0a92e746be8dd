"""Order routes.

    POST   orders/                  create (``Idempotency-Key`` header)
    GET    orders/                  list
    GET    orders/{id}/             retrieve
    PATCH  orders/{id}/             status transition (staff)
    POST   orders/{id}/cancel/      cancel before shipping
    POST   orders/bulk-status/      best-effort bulk transition (staff)
"""

from __future__ import annotations

from rest_framework.routers import SimpleRouter

from modules.orders.views import OrderViewSet

router = SimpleRouter()
router.register("orders", OrderViewSet, basename="order")

urlpatterns = router.urls
