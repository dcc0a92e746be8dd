"""Unit tests for RefundService (refund & restock engine)."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from modules.orders.constants import HistoryKind, OrderStatus, PaymentStatus
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO
from modules.orders.events import OrderRefunded
from modules.orders.exceptions import InvalidOrderStatus, OrderNotFound
from modules.orders.models import Order
from modules.orders.services import OrderService
from modules.payments.dtos import BatchRefundDTO, RefundDTO, VerifyPaymentDTO
from modules.payments.exceptions import AlreadyRefunded, AmountExceedsTotal
from modules.payments.refunds import RefundService
from modules.products.exceptions import VariantNotFound
from modules.products.ledger import StockLedger
from modules.products.models import StockVariant
from modules.products.repositories.django_repository import ProductDjangoRepository
from shared.domain.exceptions import Forbidden
from shared.infrastructure.bus import InMemoryEventBus

pytestmark = pytest.mark.unit

REFUND = RefundDTO(reason="Customer request")


class RecordingHandler:
    def __init__(self):
        self.events = []

    def handle(self, event):
        self.events.append(event)


class RecordingLedger(StockLedger):
    """Ledger that remembers which variant rows it touched, in order."""

    def __init__(self):
        self.touched = []

    def adjust_stock(self, uow, product_id, size, color, delta):
        self.touched.append((size, color))
        super().adjust_stock(uow, product_id, size, color, delta)


@pytest.fixture()
def pay(payment_service, customer):
    def _pay(order, transaction_id="txn_extra"):
        intent = payment_service.create_payment_intent(order.id, customer)
        return payment_service.verify_payment(
            order.id,
            customer,
            VerifyPaymentDTO(
                payment_intent_id=intent.payment_intent_id, transaction_id=transaction_id
            ),
        )

    return _pay


class TestProcessRefund:
    def test_refund_cancels_order_and_restores_stock(
        self, refund_service, paid_order, staff, tee, stock_of
    ):
        assert stock_of(tee) == 3

        order = refund_service.process_refund(paid_order.id, staff, REFUND)

        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.refund_amount == Decimal("1000.00")
        assert order.refund_id.startswith("refund_")
        assert order.refund_reason == "Customer request"
        assert order.refunded_at is not None
        assert order.stock_released_at is not None
        assert stock_of(tee) == 5

        last = list(order.status_history.all())[-1]
        assert (last.kind, last.old_status, last.new_status) == (
            HistoryKind.ORDER,
            OrderStatus.CONFIRMED,
            OrderStatus.CANCELLED,
        )

    def test_partial_amount(self, refund_service, paid_order, staff):
        order = refund_service.process_refund(
            paid_order.id, staff, RefundDTO(amount=Decimal("250.00"), reason="Damaged")
        )
        assert order.refund_amount == Decimal("250.00")

    def test_amount_above_total(self, refund_service, paid_order, staff, tee, stock_of):
        with pytest.raises(AmountExceedsTotal):
            refund_service.process_refund(
                paid_order.id, staff, RefundDTO(amount=Decimal("1000.01"), reason="x")
            )

        stored = Order.objects.get(id=paid_order.id)
        assert stored.payment_status == PaymentStatus.COMPLETED
        assert stock_of(tee) == 3

    def test_twice(self, refund_service, paid_order, staff):
        refund_service.process_refund(paid_order.id, staff, REFUND)
        with pytest.raises(AlreadyRefunded):
            refund_service.process_refund(paid_order.id, staff, REFUND)

    def test_unpaid_order(self, refund_service, place_order, staff):
        order = place_order()
        with pytest.raises(InvalidOrderStatus):
            refund_service.process_refund(order.id, staff, REFUND)

    def test_staff_only(self, refund_service, paid_order, customer):
        with pytest.raises(Forbidden):
            refund_service.process_refund(paid_order.id, customer, REFUND)

    def test_unknown_order(self, refund_service, staff):
        with pytest.raises(OrderNotFound):
            refund_service.process_refund(uuid4(), staff, REFUND)

    def test_delivered_order_keeps_its_status(
        self, refund_service, order_service, place_order, staff, tee, stock_of
    ):
        order = place_order()
        for status in (
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        ):
            order_service.update_status(order.id, staff, status)

        refunded = refund_service.process_refund(order.id, staff, REFUND)

        assert refunded.status == OrderStatus.DELIVERED
        assert refunded.payment_status == PaymentStatus.REFUNDED
        assert stock_of(tee) == 5
        last = list(refunded.status_history.all())[-1]
        assert (last.kind, last.old_status, last.new_status) == (
            HistoryKind.PAYMENT,
            PaymentStatus.COMPLETED,
            PaymentStatus.REFUNDED,
        )

    def test_cancelled_order_is_not_restocked_twice(
        self, refund_service, order_service, paid_order, customer, staff, tee, stock_of
    ):
        order_service.cancel_order(paid_order.id, customer)
        assert stock_of(tee) == 5

        refunded = refund_service.process_refund(paid_order.id, staff, REFUND)

        assert refunded.status == OrderStatus.CANCELLED
        assert refunded.payment_status == PaymentStatus.REFUNDED
        assert stock_of(tee) == 5

    def test_missing_variant_aborts_refund(self, refund_service, paid_order, staff, tee):
        StockVariant.objects.filter(product=tee).delete()

        with pytest.raises(VariantNotFound):
            refund_service.process_refund(paid_order.id, staff, REFUND)

        stored = Order.objects.get(id=paid_order.id)
        assert stored.payment_status == PaymentStatus.COMPLETED
        assert stored.status == OrderStatus.CONFIRMED


class TestBatchProcessRefunds:
    def test_refunds_only_completed_payments(
        self, refund_service, paid_order, place_order, staff
    ):
        unpaid = place_order(quantity=1)

        result = refund_service.batch_process_refunds(
            staff, BatchRefundDTO(order_ids=[paid_order.id, unpaid.id], reason="Recall")
        )

        assert result.orders_processed == 1
        assert result.stock_restored == 1
        assert result.order_ids == [paid_order.id]
        assert Order.objects.get(id=unpaid.id).payment_status == PaymentStatus.PENDING

    def test_all_or_nothing(
        self, refund_service, paid_order, make_product, place_order, pay, staff, tee, stock_of
    ):
        hoodie = make_product(sku="HOOD-001", price="800.00")
        second = pay(place_order(product=hoodie, quantity=1, payment_method="CARD"))
        StockVariant.objects.filter(product=hoodie).delete()

        with pytest.raises(VariantNotFound):
            refund_service.batch_process_refunds(
                staff, BatchRefundDTO(order_ids=[paid_order.id, second.id], reason="Recall")
            )

        for order_id in (paid_order.id, second.id):
            assert Order.objects.get(id=order_id).payment_status == PaymentStatus.COMPLETED
        assert stock_of(tee) == 3

    def test_staff_only(self, refund_service, paid_order, customer):
        with pytest.raises(Forbidden):
            refund_service.batch_process_refunds(
                customer, BatchRefundDTO(order_ids=[paid_order.id], reason="Recall")
            )

    def test_events_published_after_commit(
        self,
        order_repository,
        ledger,
        paid_order,
        place_order,
        pay,
        staff,
        django_capture_on_commit_callbacks,
    ):
        second = pay(place_order(quantity=1, payment_method="CARD"))
        recorder = RecordingHandler()
        bus = InMemoryEventBus()
        bus.subscribe(OrderRefunded, recorder)
        service = RefundService(order_repository, ledger, event_bus=bus)

        with django_capture_on_commit_callbacks(execute=True):
            service.batch_process_refunds(
                staff, BatchRefundDTO(order_ids=[paid_order.id, second.id], reason="Recall")
            )

        assert {e.aggregate_id for e in recorder.events} == {paid_order.id, second.id}


class TestBatchLockOrder:
    def test_restocks_variants_in_the_order_create_order_reserves_them(
        self, order_repository, make_product, pay, customer, staff, stock_of
    ):
        duo = make_product(sku="DUO-001", variants={("S", "black"): 5, ("M", "black"): 5})
        recording = RecordingLedger()
        orders = OrderService(
            order_repository=order_repository,
            catalog_reader=ProductDjangoRepository(),
            ledger=recording,
        )

        def _order(*sizes):
            return orders.create_order(
                customer,
                CreateOrderDTO(
                    items=[
                        CreateOrderItemDTO(
                            product_id=duo.id, quantity=1, size=size, color="black"
                        )
                        for size in sizes
                    ],
                    shipping_address_id="addr-1",
                    payment_method="CARD",
                ),
            )

        small = pay(_order("S"))
        medium = pay(_order("M"))
        recording.touched.clear()
        _order("S", "M")
        reserved = list(recording.touched)

        recording.touched.clear()
        result = RefundService(order_repository, recording).batch_process_refunds(
            staff, BatchRefundDTO(order_ids=[small.id, medium.id], reason="Recall")
        )

        assert result.stock_restored == 2
        assert reserved == [("M", "black"), ("S", "black")]
        assert recording.touched == reserved
        assert stock_of(duo, size="S") == 4
        assert stock_of(duo, size="M") == 4
