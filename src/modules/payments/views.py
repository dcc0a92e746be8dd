"""Payment API views.

Thin HTTP surface over ``PaymentService`` and ``RefundService``.  Domain
errors propagate to ``api_exception_handler``.
"""

from __future__ import annotations

from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import ViewSet

from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.serializers import OrderSerializer
from modules.payments.dtos import BatchRefundDTO, RefundDTO, VerifyPaymentDTO
from modules.payments.refunds import RefundService
from modules.payments.serializers import (
    BatchRefundSerializer,
    PaymentIntentSerializer,
    RefundSerializer,
    VerifyPaymentSerializer,
)
from modules.payments.services import PaymentService
from modules.payments.verifiers import get_payment_verifier
from modules.products.ledger import StockLedger


class PaymentViewSet(ViewSet):
    """Payment intents, verification and refunds."""

    permission_classes = [IsAuthenticated]

    def _payment_service(self) -> PaymentService:
        return PaymentService(
            order_repository=OrderDjangoRepository(),
            verifier=get_payment_verifier(),
        )

    def _refund_service(self) -> RefundService:
        return RefundService(
            order_repository=OrderDjangoRepository(),
            ledger=StockLedger(),
        )

    @action(detail=False, methods=["get"])
    def methods(self, request: Request) -> Response:
        """GET /api/v1/payments/methods/"""
        methods = PaymentService.list_payment_methods()
        return Response([method.model_dump(mode="json") for method in methods])

    @action(detail=False, methods=["post"])
    def intent(self, request: Request) -> Response:
        """POST /api/v1/payments/intent/"""
        serializer = PaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        intent = self._payment_service().create_payment_intent(
            serializer.validated_data["order_id"], request.user
        )
        return Response(intent.model_dump(mode="json"))

    @action(detail=False, methods=["post"])
    def verify(self, request: Request) -> Response:
        """POST /api/v1/payments/verify/

        A rejected payment answers 200 with ``payment_status=failed``.
        """
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = self._payment_service().verify_payment(
            data["order_id"],
            request.user,
            VerifyPaymentDTO(
                payment_intent_id=data["payment_intent_id"],
                transaction_id=data["transaction_id"],
            ),
        )
        return Response(OrderSerializer(order).data)

    @action(detail=False, methods=["post"])
    def refund(self, request: Request) -> Response:
        """POST /api/v1/payments/refund/ (staff)"""
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = self._refund_service().process_refund(
            data["order_id"],
            request.user,
            RefundDTO(amount=data.get("amount"), reason=data["reason"]),
        )
        return Response(OrderSerializer(order).data)

    @action(detail=False, methods=["post"], url_path="refund/batch")
    def refund_batch(self, request: Request) -> Response:
        """POST /api/v1/payments/refund/batch/ (staff, all-or-nothing)"""
        serializer = BatchRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self._refund_service().batch_process_refunds(
            request.user,
            BatchRefundDTO(order_ids=data["order_ids"], reason=data["reason"]),
        )
        return Response(result.model_dump(mode="json"))
