"""Payment DRF serializers (request validation only).

Responses are rendered from the service DTOs or with ``OrderSerializer``.
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers


class PaymentIntentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()


class VerifyPaymentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    payment_intent_id = serializers.CharField(max_length=255)
    transaction_id = serializers.CharField(max_length=255)


class RefundSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
        required=False,
        allow_null=True,
    )
    reason = serializers.CharField(max_length=500)


class BatchRefundSerializer(serializers.Serializer):
    order_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    reason = serializers.CharField(max_length=500)
