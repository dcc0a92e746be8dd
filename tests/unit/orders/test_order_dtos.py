"""Unit tests for Order DTOs (Pydantic v2)."""

from __future__ import annotations

from uuid import uuid4

import pytest
from pydantic import ValidationError

from modules.orders.dtos import BulkStatusUpdateDTO, CreateOrderDTO, CreateOrderItemDTO

pytestmark = pytest.mark.unit


class TestCreateOrderItemDTO:
    def test_variant_line(self):
        item = CreateOrderItemDTO(product_id=uuid4(), quantity=2, size="M", color="black")
        assert item.has_variant is True

    def test_line_without_variant(self):
        item = CreateOrderItemDTO(product_id=uuid4(), quantity=1)
        assert item.has_variant is False

    def test_blank_variant_is_none(self):
        item = CreateOrderItemDTO(product_id=uuid4(), quantity=1, size=" ", color="")
        assert item.size is None
        assert item.has_variant is False

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, quantity):
        with pytest.raises(ValidationError):
            CreateOrderItemDTO(product_id=uuid4(), quantity=quantity)

    def test_size_without_color_is_invalid(self):
        with pytest.raises(ValidationError):
            CreateOrderItemDTO(product_id=uuid4(), quantity=1, size="M")

    def test_is_frozen(self):
        item = CreateOrderItemDTO(product_id=uuid4(), quantity=1)
        with pytest.raises(ValidationError):
            item.quantity = 5


class TestCreateOrderDTO:
    def test_defaults_to_cash_on_delivery(self):
        dto = CreateOrderDTO(
            items=[CreateOrderItemDTO(product_id=uuid4(), quantity=1)],
            shipping_address_id="addr-1",
        )
        assert dto.payment_method == "COD"
        assert dto.idempotency_key is None

    def test_payment_method_is_normalised(self):
        dto = CreateOrderDTO(
            items=[CreateOrderItemDTO(product_id=uuid4(), quantity=1)],
            shipping_address_id="addr-1",
            payment_method="upi",
        )
        assert dto.payment_method == "UPI"

    def test_unknown_payment_method(self):
        with pytest.raises(ValidationError):
            CreateOrderDTO(
                items=[CreateOrderItemDTO(product_id=uuid4(), quantity=1)],
                shipping_address_id="addr-1",
                payment_method="BARTER",
            )

    def test_items_must_not_be_empty(self):
        with pytest.raises(ValidationError):
            CreateOrderDTO(items=[], shipping_address_id="addr-1")

    def test_duplicate_lines_are_rejected(self):
        product_id = uuid4()
        with pytest.raises(ValidationError):
            CreateOrderDTO(
                items=[
                    CreateOrderItemDTO(product_id=product_id, quantity=1, size="M", color="red"),
                    CreateOrderItemDTO(product_id=product_id, quantity=2, size="M", color="red"),
                ],
                shipping_address_id="addr-1",
            )

    def test_same_product_different_variants_is_allowed(self):
        product_id = uuid4()
        dto = CreateOrderDTO(
            items=[
                CreateOrderItemDTO(product_id=product_id, quantity=1, size="M", color="red"),
                CreateOrderItemDTO(product_id=product_id, quantity=1, size="L", color="red"),
            ],
            shipping_address_id="addr-1",
        )
        assert len(dto.items) == 2


class TestBulkStatusUpdateDTO:
    def test_ids_are_deduplicated_in_order(self):
        first, second = uuid4(), uuid4()
        dto = BulkStatusUpdateDTO(order_ids=[first, second, first], new_status="CONFIRMED")
        assert dto.order_ids == [first, second]
        assert dto.new_status == "confirmed"

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            BulkStatusUpdateDTO(order_ids=[uuid4()], new_status="lost")

    def test_empty_ids(self):
        with pytest.raises(ValidationError):
            BulkStatusUpdateDTO(order_ids=[], new_status="confirmed")
