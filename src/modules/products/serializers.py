"""Product DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.products.models import Product, StockVariant


class StockVariantSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockVariant
        fields = ["size", "color", "quantity"]
        read_only_fields = fields


class ProductSerializer(serializers.ModelSerializer):
    """Read serializer for the Product resource with its variants."""

    stock = StockVariantSerializer(many=True, read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "sku",
            "name",
            "description",
            "price",
            "discount_price",
            "status",
            "stock",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class StockAdjustmentItemSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    size = serializers.CharField(max_length=20)
    color = serializers.CharField(max_length=40)
    quantity_change = serializers.IntegerField()

    def validate_quantity_change(self, value: int) -> int:
        if value == 0:
            raise serializers.ValidationError("quantity_change must not be zero.")
        return value


class StockAdjustmentSerializer(serializers.Serializer):
    adjustments = StockAdjustmentItemSerializer(many=True, allow_empty=False)
