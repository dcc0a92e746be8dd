"""Unit tests for OrderDjangoRepository guarded mutations."""

from __future__ import annotations

from uuid import uuid4

import pytest

from modules.core.transactions import UnitOfWork
from modules.orders.constants import HistoryKind, OrderStatus, PaymentStatus
from modules.orders.exceptions import InvalidOrderStatus
from modules.orders.models import Order
from shared.domain.exceptions import StateConflict

pytestmark = pytest.mark.unit


class TestApplyTransition:
    def test_appends_one_history_row(self, order_repository, place_order):
        order = place_order()
        with UnitOfWork("test") as uow:
            order_repository.apply_transition(
                uow, order, HistoryKind.PAYMENT, PaymentStatus.FAILED, actor_id="sys"
            )

        stored = order_repository.get_by_id(str(order.id))
        assert stored.payment_status == PaymentStatus.FAILED
        assert stored.version == 2
        rows = list(stored.status_history.all())
        assert len(rows) == 2
        assert (rows[1].kind, rows[1].old_status, rows[1].new_status) == (
            HistoryKind.PAYMENT,
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
        )

    def test_stale_version_raises_state_conflict(self, order_repository, place_order):
        order = place_order()
        stale = order_repository.get_by_id(str(order.id))
        fresh = order_repository.get_by_id(str(order.id))

        with UnitOfWork("winner") as uow:
            order_repository.apply_transition(uow, fresh, HistoryKind.ORDER, OrderStatus.CONFIRMED)

        with pytest.raises(StateConflict) as exc_info:
            with UnitOfWork("loser") as uow:
                order_repository.apply_transition(
                    uow, stale, HistoryKind.ORDER, OrderStatus.CANCELLED
                )

        assert exc_info.value.retryable is True
        stored = Order.objects.get(id=order.id)
        assert stored.status == OrderStatus.CONFIRMED
        assert stored.status_history.count() == 2

    def test_extra_changes_are_written_in_the_same_update(self, order_repository, place_order):
        order = place_order()
        with UnitOfWork("test") as uow:
            order_repository.apply_transition(
                uow,
                order,
                HistoryKind.ORDER,
                OrderStatus.CONFIRMED,
                payment_status=PaymentStatus.COMPLETED,
                transaction_id="txn_1",
            )

        stored = Order.objects.get(id=order.id)
        assert stored.payment_status == PaymentStatus.COMPLETED
        assert stored.transaction_id == "txn_1"

    def test_illegal_payment_change_is_rejected(self, order_repository, place_order):
        order = place_order()

        with pytest.raises(InvalidOrderStatus) as exc_info:
            with UnitOfWork("test") as uow:
                order_repository.apply_transition(
                    uow, order, HistoryKind.PAYMENT, PaymentStatus.REFUNDED
                )

        assert exc_info.value.context["current_payment_status"] == PaymentStatus.PENDING
        stored = Order.objects.get(id=order.id)
        assert stored.payment_status == PaymentStatus.PENDING
        assert stored.version == 1
        assert stored.status_history.count() == 1

    def test_payment_change_riding_an_order_transition_is_checked(
        self, order_repository, place_order
    ):
        order = place_order()

        with pytest.raises(InvalidOrderStatus):
            with UnitOfWork("test") as uow:
                order_repository.apply_transition(
                    uow,
                    order,
                    HistoryKind.ORDER,
                    OrderStatus.CANCELLED,
                    payment_status=PaymentStatus.REFUNDED,
                )

        stored = Order.objects.get(id=order.id)
        assert stored.status == OrderStatus.PENDING
        assert stored.payment_status == PaymentStatus.PENDING


class TestStorePaymentIntent:
    def test_does_not_bump_version(self, order_repository, place_order):
        order = place_order()
        with UnitOfWork("test") as uow:
            order_repository.store_payment_intent(uow, order, "pi_1")

        stored = Order.objects.get(id=order.id)
        assert stored.payment_intent_id == "pi_1"
        assert stored.version == 1
        assert stored.status_history.count() == 1

    def test_refused_once_cancelled(self, order_repository, order_service, place_order, customer):
        order = place_order()
        order_service.cancel_order(order.id, customer)

        with pytest.raises(StateConflict):
            with UnitOfWork("test") as uow:
                order_repository.store_payment_intent(uow, order, "pi_late")


class TestReads:
    def test_get_by_id_invalid_uuid(self, order_repository):
        assert order_repository.get_by_id("nope") is None

    def test_get_many_skips_unknown(self, order_repository, place_order):
        order = place_order()
        assert [o.id for o in order_repository.get_many([order.id, uuid4()])] == [order.id]

    def test_get_by_idempotency_key(self, order_repository, place_order):
        order = place_order(idempotency_key="abc")
        assert order_repository.get_by_idempotency_key("abc").id == order.id
        assert order_repository.get_by_idempotency_key("zzz") is None
