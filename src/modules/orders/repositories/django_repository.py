"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.  Writes run
inside the caller's ``UnitOfWork``; this class never opens transactions
of its own.

Concurrency control uses the optimistic ``version`` column: a transition
is a single ``UPDATE ... WHERE id = ? AND version = ?`` and zero matched
rows means another writer got there first.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db.models import Q, QuerySet
from django.utils import timezone

from modules.orders.constants import HistoryKind, OrderStatus, PaymentStatus
from modules.orders.models import Order, OrderItem, OrderStatusHistory
from modules.orders.repositories.interfaces import IOrderRepository
from modules.orders.state_machine import ensure_payment_transition
from shared.domain.exceptions import StateConflict

if TYPE_CHECKING:
    from modules.core.transactions import UnitOfWork

logger = structlog.get_logger(__name__)

_STATUS_FIELDS = {
    HistoryKind.ORDER: "status",
    HistoryKind.PAYMENT: "payment_status",
}


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    def create(
        self,
        uow: UnitOfWork,
        order_data: Dict[str, Any],
        items: Sequence[Dict[str, Any]],
        actor_id: str = "",
        notes: str = "",
    ) -> Order:
        """Create an order with its items and the initial history row.

        ``order_data`` holds the Order column values (owner, amounts,
        payment method and status, idempotency key); each entry of
        ``items`` the OrderItem snapshot columns.
        """
        uow.checkpoint("create_order")

        order = Order(**order_data)
        order.save()

        for item_data in items:
            OrderItem(order=order, **item_data).save()

        OrderStatusHistory.objects.create(
            order=order,
            kind=HistoryKind.ORDER,
            old_status=None,
            new_status=order.status,
            actor_id=actor_id,
            notes=notes,
        )

        logger.info(
            "order.persisted",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(items),
        )
        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _queryset(self) -> QuerySet[Order]:
        return Order.objects.prefetch_related("items", "status_history")

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with eager-loaded items and history.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return self._queryset().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> QuerySet[Order]:
        """List orders with optional Django ORM look-ups.

        Supported filter keys include ``status``, ``payment_status``,
        ``owner_id`` and ``created_at__range``.
        """
        queryset = self._queryset()
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    def get_many(self, ids: Sequence[UUID]) -> List[Order]:
        return list(self._queryset().filter(id__in=list(ids)))

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return self._queryset().filter(idempotency_key=key).first()

    # ------------------------------------------------------------------
    # Guarded mutations
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        uow: UnitOfWork,
        order: Order,
        kind: str,
        new_status: str,
        actor_id: str = "",
        notes: str = "",
        **changes: Any,
    ) -> Order:
        """Apply a status transition plus *changes* and append history.

        ``kind`` selects the state machine (``order`` or ``payment``) whose
        status field receives *new_status*; *changes* may move other
        columns in the same statement.  Any change of ``payment_status``,
        whatever the *kind*, must follow the payment state machine.

        Raises:
            InvalidOrderStatus: illegal ``payment_status`` change.
            StateConflict: the order version moved since it was read.
        """
        uow.checkpoint("apply_transition")

        status_field = _STATUS_FIELDS[kind]
        old_status = getattr(order, status_field)
        changes[status_field] = new_status
        new_payment_status = changes.get("payment_status", order.payment_status)
        if new_payment_status != order.payment_status:
            ensure_payment_transition(order.id, order.payment_status, new_payment_status)
        expected_version = order.version

        if not order.compare_and_set(**changes):
            logger.warning(
                "order.state_conflict",
                order_id=str(order.id),
                expected_version=expected_version,
                kind=kind,
                new_status=new_status,
            )
            raise StateConflict(
                f"Order {order.id} was modified concurrently.",
                order_id=order.id,
                expected_version=expected_version,
            )

        OrderStatusHistory.objects.create(
            order=order,
            kind=kind,
            old_status=old_status,
            new_status=new_status,
            actor_id=actor_id,
            notes=notes,
        )

        logger.info(
            "order.transitioned",
            order_id=str(order.id),
            kind=kind,
            old_status=old_status,
            new_status=new_status,
            version=order.version,
        )
        return order

    def store_payment_intent(self, uow: UnitOfWork, order: Order, intent_id: str) -> Order:
        """Overwrite ``payment_intent_id`` without touching ``version``.

        Matches only while the order is still unpaid and not cancelled, so
        a payment verified in the meantime is never masked.
        """
        uow.checkpoint("store_payment_intent")

        now = timezone.now()
        updated = (
            Order.objects.filter(
                pk=order.pk,
                payment_status__in=[PaymentStatus.PENDING, PaymentStatus.FAILED],
            )
            .filter(~Q(status=OrderStatus.CANCELLED))
            .update(payment_intent_id=intent_id, updated_at=now)
        )
        if not updated:
            raise StateConflict(
                f"Order {order.id} changed while issuing a payment intent.",
                order_id=order.id,
            )

        order.payment_intent_id = intent_id
        order.updated_at = now
        return order
