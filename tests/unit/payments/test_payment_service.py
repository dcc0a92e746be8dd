"""Unit tests for PaymentService (payment verification gate).

Covers:
- create_payment_intent: ownership, payable checks, no version bump.
- verify_payment: positive / negative verdicts, replays, mismatched
  intents, verifier failures and state changes racing the verifier.
"""

from __future__ import annotations

import threading
from uuid import uuid4

import pytest

from modules.orders.constants import HistoryKind, OrderStatus, PaymentStatus
from modules.orders.events import PaymentCompleted, PaymentFailed
from modules.orders.exceptions import InvalidOrderStatus, OrderNotFound
from modules.orders.models import Order
from modules.payments.dtos import VerifyPaymentDTO
from modules.payments.exceptions import AlreadyPaid, ExternalVerifierFailure
from modules.payments.services import PaymentService
from modules.payments.verifiers import MockPaymentVerifier, VerificationResult
from shared.domain.exceptions import Forbidden, StateConflict
from shared.infrastructure.bus import InMemoryEventBus

pytestmark = pytest.mark.unit


class RecordingHandler:
    def __init__(self):
        self.events = []

    def handle(self, event):
        self.events.append(event)


class BrokenVerifier:
    def verify(self, intent_ref, evidence):
        raise TimeoutError("gateway timed out")


class RacingVerifier:
    """Lets a concurrent negative verdict land before answering positively."""

    def __init__(self, service, order_id, actor):
        self.service = service
        self.order_id = order_id
        self.actor = actor

    def verify(self, intent_ref, evidence):
        self.service.apply_verdict(
            self.order_id,
            self.actor,
            VerifyPaymentDTO(payment_intent_id=intent_ref, transaction_id="fail_race"),
            VerificationResult(valid=False, reason="declined"),
        )
        return VerificationResult(valid=True)


class CancellingVerifier:
    """Approves the payment after the order was cancelled behind our back."""

    def __init__(self, order_id):
        self.order_id = order_id

    def verify(self, intent_ref, evidence):
        Order.objects.filter(id=self.order_id).update(status=OrderStatus.CANCELLED)
        return VerificationResult(valid=True)


class ReissuingVerifier:
    """Approves an intent the customer replaced while it was being checked."""

    def __init__(self, service, order_id, actor):
        self.service = service
        self.order_id = order_id
        self.actor = actor
        self.reissued = None

    def verify(self, intent_ref, evidence):
        self.reissued = self.service.create_payment_intent(self.order_id, self.actor)
        return VerificationResult(valid=True)


class HangingVerifier:
    """Never answers until released."""

    def __init__(self):
        self.release = threading.Event()

    def verify(self, intent_ref, evidence):
        self.release.wait(timeout=5)
        return VerificationResult(valid=True)


@pytest.fixture()
def inline_verifier(settings):
    """Run the verifier on the test thread so it can share the test transaction."""
    settings.PAYMENT_VERIFIER_TIMEOUT = None


@pytest.fixture()
def card_order(place_order):
    return place_order(payment_method="CARD")


@pytest.fixture()
def intent(payment_service, card_order, customer):
    return payment_service.create_payment_intent(card_order.id, customer)


def _evidence(intent, transaction_id="txn_001"):
    return VerifyPaymentDTO(
        payment_intent_id=intent.payment_intent_id, transaction_id=transaction_id
    )


# ===========================================================================
# create_payment_intent
# ===========================================================================


class TestCreatePaymentIntent:
    def test_issues_intent_for_order_total(self, intent, card_order):
        assert intent.payment_intent_id.startswith("pi_")
        assert intent.client_secret.startswith(f"{intent.payment_intent_id}_secret_")
        assert intent.amount == card_order.total_amount
        assert intent.order_number == card_order.order_number

        stored = Order.objects.get(id=card_order.id)
        assert stored.payment_intent_id == intent.payment_intent_id
        assert stored.version == 1

    def test_latest_intent_wins(self, payment_service, intent, card_order, customer):
        second = payment_service.create_payment_intent(card_order.id, customer)

        assert second.payment_intent_id != intent.payment_intent_id
        stored = Order.objects.get(id=card_order.id)
        assert stored.payment_intent_id == second.payment_intent_id

    def test_only_the_owner(self, payment_service, card_order, other_customer, staff):
        for actor in (other_customer, staff):
            with pytest.raises(Forbidden):
                payment_service.create_payment_intent(card_order.id, actor)

    def test_unknown_order(self, payment_service, customer):
        with pytest.raises(OrderNotFound):
            payment_service.create_payment_intent(uuid4(), customer)

    def test_paid_order(self, payment_service, paid_order, customer):
        with pytest.raises(AlreadyPaid):
            payment_service.create_payment_intent(paid_order.id, customer)

    def test_cancelled_order(self, payment_service, order_service, card_order, customer):
        order_service.cancel_order(card_order.id, customer)
        with pytest.raises(InvalidOrderStatus):
            payment_service.create_payment_intent(card_order.id, customer)


# ===========================================================================
# verify_payment
# ===========================================================================


class TestVerifyPositive:
    def test_completes_payment_and_confirms_order(self, paid_order):
        assert paid_order.payment_status == PaymentStatus.COMPLETED
        assert paid_order.status == OrderStatus.CONFIRMED
        assert paid_order.transaction_id == "txn_paid_001"
        assert paid_order.paid_at is not None
        assert paid_order.version == 2

        rows = list(paid_order.status_history.all())
        assert len(rows) == 2
        assert (rows[1].kind, rows[1].old_status, rows[1].new_status) == (
            HistoryKind.ORDER,
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
        )

    def test_replay_with_same_transaction_is_a_noop(
        self, payment_service, paid_order, customer
    ):
        again = payment_service.verify_payment(
            paid_order.id,
            customer,
            VerifyPaymentDTO(
                payment_intent_id=paid_order.payment_intent_id,
                transaction_id="txn_paid_001",
            ),
        )

        assert again.id == paid_order.id
        assert Order.objects.get(id=paid_order.id).version == 2
        assert paid_order.status_history.count() == 2

    def test_different_transaction_is_already_paid(
        self, payment_service, paid_order, customer
    ):
        with pytest.raises(AlreadyPaid):
            payment_service.verify_payment(
                paid_order.id,
                customer,
                VerifyPaymentDTO(
                    payment_intent_id=paid_order.payment_intent_id,
                    transaction_id="txn_other",
                ),
            )

    def test_confirmed_order_records_a_payment_transition(
        self, payment_service, order_service, card_order, customer, staff
    ):
        order_service.update_status(card_order.id, staff, OrderStatus.CONFIRMED)
        intent = payment_service.create_payment_intent(card_order.id, customer)

        order = payment_service.verify_payment(card_order.id, customer, _evidence(intent))

        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.COMPLETED
        last = list(order.status_history.all())[-1]
        assert (last.kind, last.new_status) == (HistoryKind.PAYMENT, PaymentStatus.COMPLETED)

    def test_event_published_after_commit(
        self, order_repository, intent, card_order, customer, django_capture_on_commit_callbacks
    ):
        recorder = RecordingHandler()
        bus = InMemoryEventBus()
        bus.subscribe(PaymentCompleted, recorder)
        service = PaymentService(order_repository, MockPaymentVerifier(), event_bus=bus)

        with django_capture_on_commit_callbacks(execute=True):
            service.verify_payment(card_order.id, customer, _evidence(intent))

        assert len(recorder.events) == 1
        assert recorder.events[0].payload["transaction_id"] == "txn_001"


class TestVerifyNegative:
    def test_marks_payment_failed_without_raising(
        self, payment_service, intent, card_order, customer
    ):
        order = payment_service.verify_payment(
            card_order.id, customer, _evidence(intent, "fail_001")
        )

        assert order.payment_status == PaymentStatus.FAILED
        assert order.status == OrderStatus.PENDING
        last = list(order.status_history.all())[-1]
        assert (last.kind, last.old_status, last.new_status) == (
            HistoryKind.PAYMENT,
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
        )

    def test_repeated_rejection_adds_no_history(
        self, payment_service, intent, card_order, customer
    ):
        payment_service.verify_payment(card_order.id, customer, _evidence(intent, "fail_001"))
        payment_service.verify_payment(card_order.id, customer, _evidence(intent, "fail_002"))

        assert Order.objects.get(id=card_order.id).status_history.count() == 2

    def test_retry_after_failure_succeeds(self, payment_service, intent, card_order, customer):
        payment_service.verify_payment(card_order.id, customer, _evidence(intent, "fail_001"))
        order = payment_service.verify_payment(card_order.id, customer, _evidence(intent))

        assert order.payment_status == PaymentStatus.COMPLETED
        assert order.status == OrderStatus.CONFIRMED

    def test_failed_event(
        self, order_repository, intent, card_order, customer, django_capture_on_commit_callbacks
    ):
        recorder = RecordingHandler()
        bus = InMemoryEventBus()
        bus.subscribe(PaymentFailed, recorder)
        service = PaymentService(order_repository, MockPaymentVerifier(), event_bus=bus)

        with django_capture_on_commit_callbacks(execute=True):
            service.verify_payment(card_order.id, customer, _evidence(intent, "fail_001"))

        assert [e.event_name for e in recorder.events] == ["PaymentFailed"]


class TestVerifyGuards:
    def test_intent_mismatch(self, payment_service, intent, card_order, customer):
        with pytest.raises(InvalidOrderStatus):
            payment_service.verify_payment(
                card_order.id,
                customer,
                VerifyPaymentDTO(payment_intent_id="pi_forged", transaction_id="txn_1"),
            )

    def test_other_customer(self, payment_service, intent, card_order, other_customer):
        with pytest.raises(Forbidden):
            payment_service.verify_payment(card_order.id, other_customer, _evidence(intent))

    def test_verifier_error_is_retryable_and_changes_nothing(
        self, order_repository, intent, card_order, customer
    ):
        service = PaymentService(order_repository, BrokenVerifier())

        with pytest.raises(ExternalVerifierFailure) as exc_info:
            service.verify_payment(card_order.id, customer, _evidence(intent))

        assert exc_info.value.retryable is True
        stored = Order.objects.get(id=card_order.id)
        assert stored.payment_status == PaymentStatus.PENDING
        assert stored.version == 1

    def test_state_is_rechecked_after_the_verifier(
        self, order_repository, intent, card_order, customer, inline_verifier
    ):
        service = PaymentService(order_repository, CancellingVerifier(card_order.id))

        with pytest.raises(InvalidOrderStatus):
            service.verify_payment(card_order.id, customer, _evidence(intent))

        stored = Order.objects.get(id=card_order.id)
        assert stored.payment_status == PaymentStatus.PENDING
        assert stored.transaction_id is None

    def test_racing_verdicts_leave_one_winner(
        self, payment_service, order_repository, intent, card_order, customer, inline_verifier
    ):
        racing = RacingVerifier(payment_service, card_order.id, customer)
        service = PaymentService(order_repository, racing)

        with pytest.raises(StateConflict):
            service.verify_payment(card_order.id, customer, _evidence(intent))

        stored = Order.objects.get(id=card_order.id)
        assert stored.payment_status == PaymentStatus.FAILED
        assert stored.status == OrderStatus.PENDING
        assert stored.status_history.count() == 2

    def test_verdict_for_a_replaced_intent_is_refused(
        self, payment_service, order_repository, intent, card_order, customer, inline_verifier
    ):
        reissuing = ReissuingVerifier(payment_service, card_order.id, customer)
        service = PaymentService(order_repository, reissuing)

        with pytest.raises(InvalidOrderStatus):
            service.verify_payment(card_order.id, customer, _evidence(intent))

        stored = Order.objects.get(id=card_order.id)
        assert stored.payment_status == PaymentStatus.PENDING
        assert stored.payment_intent_id == reissuing.reissued.payment_intent_id
        assert stored.transaction_id is None
        assert stored.status_history.count() == 1

    def test_unanswered_verifier_times_out(
        self, order_repository, intent, card_order, customer, settings
    ):
        settings.PAYMENT_VERIFIER_TIMEOUT = 0.05
        hanging = HangingVerifier()
        service = PaymentService(order_repository, hanging)

        try:
            with pytest.raises(ExternalVerifierFailure) as exc_info:
                service.verify_payment(card_order.id, customer, _evidence(intent))
        finally:
            hanging.release.set()

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, TimeoutError)
        stored = Order.objects.get(id=card_order.id)
        assert stored.payment_status == PaymentStatus.PENDING
        assert stored.version == 1


class TestPaymentMethods:
    def test_lists_enabled_methods(self):
        methods = PaymentService.list_payment_methods()
        assert [m.type for m in methods] == ["COD", "CARD", "UPI", "NETBANKING", "WALLET"]
