"""Payment routes.

    GET    payments/methods/        enabled payment methods
    POST   payments/intent/         issue a payment intent
    POST   payments/verify/         verify a payment
    POST   payments/refund/         refund one order (staff)
    POST   payments/refund/batch/   all-or-nothing batch refund (staff)
"""

from __future__ import annotations

from rest_framework.routers import SimpleRouter

from modules.payments.views import PaymentViewSet

router = SimpleRouter()
router.register("payments", PaymentViewSet, basename="payment")

urlpatterns = router.urls
