"""Refund & restock engine.

A refund reverses a completed payment and returns the order's reserved
variant stock through the same ledger primitive used at order creation,
all in one unit of work: if any variant cannot be restored the refund is
aborted and the order stays ``completed`` so it can be retried.

``batch_process_refunds`` runs the whole batch in a single unit of work.
Unlike the best-effort bulk status update, either every eligible order is
refunded or none is.  The restock lines of the whole batch are applied as
one ledger batch, so variant rows are locked in the same global order as
``create_order`` locks them.
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import UUID

import structlog
from django.utils import timezone

from modules.core.transactions import UnitOfWork
from modules.orders.constants import HistoryKind, OrderStatus, PaymentStatus
from modules.orders.events import OrderRefunded
from modules.orders.exceptions import InvalidOrderStatus, OrderNotFound
from modules.orders.services import order_payload, publish_after_commit, require_staff
from modules.orders.stock import release_order_stock, release_orders_stock
from modules.payments.dtos import BatchRefundResultDTO
from modules.payments.exceptions import AlreadyRefunded, AmountExceedsTotal
from shared.infrastructure.bus import event_bus as default_event_bus

if TYPE_CHECKING:
    from modules.core.authentication import Actor
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.payments.dtos import BatchRefundDTO, RefundDTO
    from modules.products.ledger import StockLedger
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)


class RefundService:
    """Application service for refunds (staff only)."""

    def __init__(
        self,
        order_repository: IOrderRepository,
        ledger: StockLedger,
        event_bus: Optional[IEventBus] = None,
    ) -> None:
        self._order_repo = order_repository
        self._ledger = ledger
        self._event_bus = event_bus or default_event_bus

    def process_refund(self, order_id: UUID, actor: Actor, dto: RefundDTO) -> Order:
        """Refund one order and restore its stock.

        Raises:
            Forbidden: the actor is not staff.
            OrderNotFound: order does not exist.
            AlreadyRefunded: payment already refunded.
            InvalidOrderStatus: payment is not completed.
            AmountExceedsTotal: ``dto.amount`` exceeds the order total.
            InsufficientStock / VariantNotFound: a variant could not be
                restored (the refund is rolled back).
            StateConflict: the order changed concurrently.
        """
        require_staff(actor, "process_refund")

        with UnitOfWork("process_refund") as uow:
            order = self._order_repo.get_by_id(str(order_id))
            if not order:
                raise OrderNotFound(f"Order {order_id} not found.", order_id=order_id)
            refund_amount = self._refund_amount(order, dto.amount)
            restored = release_order_stock(uow, self._ledger, order)
            self._record_refund(uow, order, actor, refund_amount, dto.reason, restored)

        return self._order_repo.get_by_id(str(order.id)) or order

    def batch_process_refunds(self, actor: Actor, dto: BatchRefundDTO) -> BatchRefundResultDTO:
        """Refund every order of *dto* whose payment is completed.

        Orders in any other payment state are skipped.  The stock of all
        refunded orders goes back in one ledger batch before any order row
        is updated.  One failure aborts the whole batch.
        """
        require_staff(actor, "batch_process_refunds")
        log = logger.bind(actor_id=actor.actor_id, requested=len(dto.order_ids))

        with UnitOfWork("batch_process_refunds") as uow:
            orders = sorted(
                (
                    order
                    for order in self._order_repo.get_many(dto.order_ids)
                    if order.payment_status == PaymentStatus.COMPLETED
                ),
                key=lambda order: str(order.id),
            )
            amounts = {order.id: self._refund_amount(order, None) for order in orders}
            restored = release_orders_stock(uow, self._ledger, orders)
            for order in orders:
                self._record_refund(
                    uow, order, actor, amounts[order.id], dto.reason, restored[order.id]
                )
            stock_restored = sum(restored.values())

        log.info(
            "refund.batch_processed",
            orders_processed=len(orders),
            stock_restored=stock_restored,
        )
        return BatchRefundResultDTO(
            orders_processed=len(orders),
            stock_restored=stock_restored,
            order_ids=[order.id for order in orders],
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _refund_amount(order: Order, amount: Optional[Decimal]) -> Decimal:
        if order.payment_status == PaymentStatus.REFUNDED:
            raise AlreadyRefunded(
                f"Order {order.order_number} is already refunded.", order_id=order.id
            )
        if order.payment_status != PaymentStatus.COMPLETED:
            raise InvalidOrderStatus(
                "Only completed payments can be refunded.",
                order_id=order.id,
                payment_status=order.payment_status,
            )

        refund_amount = order.total_amount if amount is None else amount
        if refund_amount > order.total_amount:
            raise AmountExceedsTotal(
                f"Refund amount {refund_amount} exceeds order total {order.total_amount}.",
                order_id=order.id,
                amount=refund_amount,
                total_amount=order.total_amount,
            )
        return refund_amount

    def _record_refund(
        self,
        uow: UnitOfWork,
        order: Order,
        actor: Actor,
        refund_amount: Decimal,
        reason: str,
        restored: int,
    ) -> None:
        """Move *order* to refunded once its stock is back in the ledger."""
        now = timezone.now()
        changes: Dict[str, Any] = {
            "refund_id": f"refund_{secrets.token_hex(12)}",
            "refund_amount": refund_amount,
            "refunded_at": now,
            "refund_reason": reason,
            "stock_released_at": order.stock_released_at or now,
        }
        notes = f"Refund processed: {reason}"
        if order.is_terminal:
            self._order_repo.apply_transition(
                uow,
                order,
                HistoryKind.PAYMENT,
                PaymentStatus.REFUNDED,
                actor_id=actor.actor_id,
                notes=notes,
                **changes,
            )
        else:
            self._order_repo.apply_transition(
                uow,
                order,
                HistoryKind.ORDER,
                OrderStatus.CANCELLED,
                actor_id=actor.actor_id,
                notes=notes,
                payment_status=PaymentStatus.REFUNDED,
                cancelled_at=now,
                cancellation_reason=notes,
                **changes,
            )

        order.add_domain_event(
            OrderRefunded(
                aggregate_id=order.id,
                payload=order_payload(order, refund_amount=str(refund_amount)),
            )
        )
        publish_after_commit(uow, order, self._event_bus)
        logger.info(
            "refund.processed",
            order_id=str(order.id),
            refund_amount=str(refund_amount),
            variants_restored=restored,
        )
