"""Payment verification gate (Use Cases).

``create_payment_intent`` issues an intent reference for an unpaid order.
``verify_payment`` asks the configured verifier about it (outside any
transaction) and ``apply_verdict`` records the outcome in one unit of
work, re-checking the order state it read before the external call.

A positive verdict that repeats the stored ``transaction_id`` is a replay
and returns the order unchanged.
"""

from __future__ import annotations

import secrets
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID

import structlog
from django.conf import settings
from django.utils import timezone

from modules.core.transactions import UnitOfWork
from modules.orders.constants import HistoryKind, OrderStatus, PaymentMethod, PaymentStatus
from modules.orders.events import PaymentCompleted, PaymentFailed
from modules.orders.exceptions import InvalidOrderStatus, OrderNotFound
from modules.orders.services import order_payload, publish_after_commit
from modules.payments.dtos import PaymentIntentDTO, PaymentMethodDTO
from modules.payments.exceptions import AlreadyPaid, ExternalVerifierFailure
from shared.domain.exceptions import Forbidden, StateConflict
from shared.infrastructure.bus import event_bus as default_event_bus

if TYPE_CHECKING:
    from modules.core.authentication import Actor
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.payments.dtos import VerifyPaymentDTO
    from modules.payments.verifiers import IPaymentVerifier, VerificationResult
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)

# Verifier calls in flight at once across the process.
VERIFIER_WORKERS = 8

PAYMENT_METHODS: List[PaymentMethodDTO] = [
    PaymentMethodDTO(
        id="cod",
        name="Cash on Delivery",
        type=PaymentMethod.COD,
        description="Pay when you receive your order",
    ),
    PaymentMethodDTO(
        id="card",
        name="Credit/Debit Card",
        type=PaymentMethod.CARD,
        description="Pay securely with your card",
    ),
    PaymentMethodDTO(
        id="upi",
        name="UPI",
        type=PaymentMethod.UPI,
        description="Pay with any UPI app",
    ),
    PaymentMethodDTO(
        id="netbanking",
        name="Net Banking",
        type=PaymentMethod.NETBANKING,
        description="Pay from your bank account",
    ),
    PaymentMethodDTO(
        id="wallet",
        name="Digital Wallet",
        type=PaymentMethod.WALLET,
        description="Pay with a digital wallet",
    ),
]


class PaymentService:
    """Application service for payment intents and verification."""

    _verifier_pool: Optional[ThreadPoolExecutor] = None
    _verifier_pool_lock = threading.Lock()

    def __init__(
        self,
        order_repository: IOrderRepository,
        verifier: IPaymentVerifier,
        event_bus: Optional[IEventBus] = None,
    ) -> None:
        self._order_repo = order_repository
        self._verifier = verifier
        self._event_bus = event_bus or default_event_bus

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def list_payment_methods() -> List[PaymentMethodDTO]:
        return [method for method in PAYMENT_METHODS if method.enabled]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_payment_intent(self, order_id: UUID, actor: Actor) -> PaymentIntentDTO:
        """Issue a fresh intent reference for an unpaid order.

        Safe to call again before verification: only the latest reference
        is stored; stock, version and history are untouched.

        Raises:
            OrderNotFound: order does not exist.
            Forbidden: the actor does not own the order.
            AlreadyPaid: payment already completed.
            InvalidOrderStatus: order cancelled or payment refunded.
        """
        intent_id = f"pi_{secrets.token_hex(12)}"

        with UnitOfWork("create_payment_intent") as uow:
            order = self._get_owned_order(order_id, actor)
            self._ensure_payable(order)
            self._order_repo.store_payment_intent(uow, order, intent_id)

        logger.info(
            "payment.intent_created",
            order_id=str(order.id),
            payment_intent_id=intent_id,
        )
        return PaymentIntentDTO(
            payment_intent_id=intent_id,
            client_secret=f"{intent_id}_secret_{secrets.token_urlsafe(12)}",
            order_id=order.id,
            order_number=order.order_number,
            amount=order.total_amount,
        )

    def verify_payment(self, order_id: UUID, actor: Actor, dto: VerifyPaymentDTO) -> Order:
        """Verify a payment with the external verifier and record the verdict.

        A negative verdict is committed (``payment_status=failed``) and the
        order is returned; it is not an operation error.

        Raises:
            OrderNotFound: order does not exist.
            Forbidden: the actor does not own the order.
            AlreadyPaid: completed with a different transaction id.
            InvalidOrderStatus: cancelled/refunded order or unknown intent.
            ExternalVerifierFailure: the verifier errored or did not answer
                within ``PAYMENT_VERIFIER_TIMEOUT`` seconds.
            StateConflict: the order changed concurrently.
        """
        log = logger.bind(order_id=str(order_id), payment_intent_id=dto.payment_intent_id)

        order = self._get_owned_order(order_id, actor)
        if self._is_replay(order, dto):
            log.info("payment.verify_replayed")
            return order
        self._ensure_payable(order)
        self._ensure_current_intent(order, dto)

        try:
            result = self._call_verifier(dto)
        except Exception as exc:
            log.exception("payment.verifier_failed")
            raise ExternalVerifierFailure(
                f"Payment verifier failed for order {order.order_number}.",
                order_id=order.id,
                payment_intent_id=dto.payment_intent_id,
            ) from exc

        log.info("payment.verifier_answered", valid=result.valid, reason=result.reason)
        return self.apply_verdict(order_id, actor, dto, result, expected_version=order.version)

    def apply_verdict(
        self,
        order_id: UUID,
        actor: Actor,
        dto: VerifyPaymentDTO,
        result: VerificationResult,
        expected_version: Optional[int] = None,
    ) -> Order:
        """Record a verifier verdict in one unit of work.

        The verdict only applies to the intent the verifier was asked about:
        an intent re-issued in the meantime raises ``InvalidOrderStatus``.
        With *expected_version*, any transition in between raises
        ``StateConflict``.
        """
        with UnitOfWork("verify_payment") as uow:
            order = self._get_owned_order(order_id, actor)
            if self._is_replay(order, dto):
                return order
            self._ensure_payable(order)
            self._ensure_current_intent(order, dto)
            if expected_version is not None and order.version != expected_version:
                raise StateConflict(
                    f"Order {order.order_number} changed during payment verification.",
                    order_id=order.id,
                    expected_version=expected_version,
                    current_version=order.version,
                )

            if result.valid:
                self._complete(uow, order, actor, dto)
            elif order.payment_status == PaymentStatus.FAILED:
                logger.info("payment.already_failed", order_id=str(order.id))
            else:
                self._fail(uow, order, actor, result)

        return self._order_repo.get_by_id(str(order.id)) or order

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _complete(
        self, uow: UnitOfWork, order: Order, actor: Actor, dto: VerifyPaymentDTO
    ) -> None:
        changes = {
            "transaction_id": dto.transaction_id,
            "payment_intent_id": dto.payment_intent_id,
            "paid_at": timezone.now(),
        }
        notes = "Payment received and verified"
        if order.status == OrderStatus.PENDING:
            self._order_repo.apply_transition(
                uow,
                order,
                HistoryKind.ORDER,
                OrderStatus.CONFIRMED,
                actor_id=actor.actor_id,
                notes=notes,
                payment_status=PaymentStatus.COMPLETED,
                **changes,
            )
        else:
            self._order_repo.apply_transition(
                uow,
                order,
                HistoryKind.PAYMENT,
                PaymentStatus.COMPLETED,
                actor_id=actor.actor_id,
                notes=notes,
                **changes,
            )

        order.add_domain_event(
            PaymentCompleted(
                aggregate_id=order.id,
                payload=order_payload(order, transaction_id=dto.transaction_id),
            )
        )
        publish_after_commit(uow, order, self._event_bus)
        logger.info(
            "payment.verified",
            order_id=str(order.id),
            transaction_id=dto.transaction_id,
            order_status=order.status,
        )

    def _fail(
        self, uow: UnitOfWork, order: Order, actor: Actor, result: VerificationResult
    ) -> None:
        self._order_repo.apply_transition(
            uow,
            order,
            HistoryKind.PAYMENT,
            PaymentStatus.FAILED,
            actor_id=actor.actor_id,
            notes=f"Payment verification failed: {result.reason or 'rejected'}",
        )
        order.add_domain_event(
            PaymentFailed(aggregate_id=order.id, payload=order_payload(order))
        )
        publish_after_commit(uow, order, self._event_bus)
        logger.warning("payment.rejected", order_id=str(order.id), reason=result.reason)

    def _call_verifier(self, dto: VerifyPaymentDTO) -> VerificationResult:
        timeout = settings.PAYMENT_VERIFIER_TIMEOUT
        if timeout is None:
            return self._verifier.verify(dto.payment_intent_id, dto.evidence)

        future = self._executor().submit(
            self._verifier.verify, dto.payment_intent_id, dto.evidence
        )
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            if future.done():
                raise
            future.cancel()
            raise TimeoutError(f"Payment verifier gave no answer within {timeout}s.") from None

    @classmethod
    def _executor(cls) -> ThreadPoolExecutor:
        with cls._verifier_pool_lock:
            if cls._verifier_pool is None:
                cls._verifier_pool = ThreadPoolExecutor(
                    max_workers=VERIFIER_WORKERS, thread_name_prefix="payment_verifier"
                )
            return cls._verifier_pool

    @staticmethod
    def _is_replay(order: Order, dto: VerifyPaymentDTO) -> bool:
        if order.payment_status != PaymentStatus.COMPLETED:
            return False
        if order.transaction_id == dto.transaction_id:
            return True
        raise AlreadyPaid(
            f"Order {order.order_number} is already paid.",
            order_id=order.id,
            transaction_id=order.transaction_id,
        )

    @staticmethod
    def _ensure_payable(order: Order) -> None:
        if order.payment_status == PaymentStatus.COMPLETED:
            raise AlreadyPaid(f"Order {order.order_number} is already paid.", order_id=order.id)
        if order.status == OrderStatus.CANCELLED:
            raise InvalidOrderStatus(
                "Cannot process payment for a cancelled order.",
                order_id=order.id,
                current_status=order.status,
            )
        if order.payment_status == PaymentStatus.REFUNDED:
            raise InvalidOrderStatus(
                "Cannot process payment for a refunded order.",
                order_id=order.id,
                payment_status=order.payment_status,
            )

    @staticmethod
    def _ensure_current_intent(order: Order, dto: VerifyPaymentDTO) -> None:
        if order.payment_intent_id != dto.payment_intent_id:
            raise InvalidOrderStatus(
                "Payment intent does not match the order.",
                order_id=order.id,
                payment_intent_id=dto.payment_intent_id,
            )

    def _get_owned_order(self, order_id, actor: Actor) -> Order:
        order = self._order_repo.get_by_id(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.", order_id=order_id)
        if not actor.owns(order.owner_id):
            raise Forbidden(
                "Not authorized to access this order.",
                order_id=order.id,
                actor_id=actor.actor_id,
            )
        return order
