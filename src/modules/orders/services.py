"""Order service layer (Use Cases).

Orchestrates order creation, status management and cancellation.  Every
write runs inside an explicit ``UnitOfWork`` opened here; repositories and
the stock ledger receive it as an argument.

Business rules enforced:
- Products must exist and be available; variant lines are reserved through
  the stock ledger in the same unit of work as the order insert.
- Amounts are always recomputed server-side (``pricing``).
- Status transitions are validated against the state machine and guarded
  by the order ``version``; each one appends one history row.
- Stock is released on cancellation, at most once per order.
- Notifications are published only after commit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from uuid import UUID

import structlog
from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone

from modules.core.transactions import UnitOfWork
from modules.orders.constants import (
    CUSTOMER_CANCELLABLE_STATES,
    HistoryKind,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from modules.orders.dtos import (
    BulkFailureDTO,
    BulkUpdateResultDTO,
    OrderSummaryDTO,
)
from modules.orders.events import OrderCancelled, OrderCreated, OrderStatusChanged
from modules.orders.exceptions import InvalidOrderStatus, OrderNotFound
from modules.orders.pricing import compute_amounts
from modules.orders.state_machine import ensure_transition
from modules.orders.stock import release_order_stock, reservation_requests
from modules.products.exceptions import (
    InactiveProduct,
    InsufficientStock,
    ProductNotFound,
    VariantNotFound,
)
from shared.domain.exceptions import DomainError, Forbidden, InvalidState
from shared.infrastructure.bus import event_bus as default_event_bus

if TYPE_CHECKING:
    from modules.core.authentication import Actor
    from modules.orders.dtos import (
        BulkStatusUpdateDTO,
        CreateOrderDTO,
        ShippingDetailsDTO,
    )
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.products.dtos import ProductSnapshot
    from modules.products.ledger import StockLedger
    from modules.products.repositories.interfaces import ICatalogReader
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers shared with the payments module
# ---------------------------------------------------------------------------


def require_staff(actor: Actor, operation: str) -> None:
    if not actor.is_staff:
        raise Forbidden(
            f"Only staff can {operation.replace('_', ' ')}.",
            actor_id=actor.actor_id,
            operation=operation,
        )


def ensure_order_access(order: Order, actor: Actor) -> None:
    """Owners see their own orders; staff see every order."""
    if not (actor.is_staff or actor.owns(order.owner_id)):
        raise Forbidden(
            f"Order {order.order_number} belongs to another customer.",
            order_id=order.id,
            actor_id=actor.actor_id,
        )


def order_payload(order: Order, **extra: Any) -> Dict[str, Any]:
    payload = OrderSummaryDTO.from_entity(order).to_payload()
    payload.update(extra)
    return payload


def publish_after_commit(uow: UnitOfWork, order: Order, bus: IEventBus) -> None:
    """Hand the events collected on *order* to *bus* once *uow* commits."""
    events = order.domain_events
    order.clear_domain_events()
    if events:
        uow.on_commit(lambda: bus.publish_all(events))


class OrderService:
    """Application service for Order use-cases.

    Receives its collaborators via constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        catalog_reader: ICatalogReader,
        ledger: StockLedger,
        event_bus: Optional[IEventBus] = None,
    ) -> None:
        self._order_repo = order_repository
        self._catalog = catalog_reader
        self._ledger = ledger
        self._event_bus = event_bus or default_event_bus

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_order(self, actor: Actor, dto: CreateOrderDTO) -> Order:
        """Create a new order and reserve its variant stock atomically.

        Steps (one unit of work):
        1. Snapshot every referenced product from the catalog.
        2. Validate availability and stock of each line.
        3. Decrement every variant through the ledger (strict).
        4. Compute amounts and persist order + items + initial history.

        A replay carrying an already used ``idempotency_key`` returns the
        original order without touching stock.

        Raises:
            ProductNotFound: a product does not exist.
            InactiveProduct: a product is not available for sale.
            VariantNotFound: a ``(size, color)`` line does not exist.
            InsufficientStock: a line requests more than is available.
        """
        log = logger.bind(actor_id=actor.actor_id, idempotency_key=dto.idempotency_key)
        log.info("order.creation_started", item_count=len(dto.items))

        if dto.idempotency_key:
            existing = self._find_replay(actor, dto.idempotency_key)
            if existing:
                return existing

        try:
            with UnitOfWork("create_order") as uow:
                order = self._create(uow, actor, dto)
        except IntegrityError:
            # Lost a race against a concurrent request with the same key.
            existing = (
                self._find_replay(actor, dto.idempotency_key)
                if dto.idempotency_key
                else None
            )
            if existing is None:
                raise
            return existing

        log.info(
            "order.created",
            order_id=str(order.id),
            order_number=order.order_number,
            total_amount=str(order.total_amount),
        )
        return self._reload(order)

    def update_status(
        self,
        order_id: UUID,
        actor: Actor,
        new_status: str,
        note: str = "",
        shipping_details: Optional[ShippingDetailsDTO] = None,
    ) -> Order:
        """Transition an order to a new status (staff only).

        ``delivered`` stamps ``delivered_at`` and completes a pending
        cash-on-delivery payment; ``cancelled`` stamps ``cancelled_at``
        and releases the order's stock.

        Raises:
            Forbidden: the actor is not staff.
            OrderNotFound: order does not exist.
            InvalidOrderStatus: transition is not allowed.
            StateConflict: the order changed concurrently.
        """
        require_staff(actor, "update_status")

        with UnitOfWork("update_status") as uow:
            order = self._get_or_raise(order_id)
            self._change_status(uow, order, actor, new_status, note, shipping_details)

        return self._reload(order)

    def cancel_order(self, order_id: UUID, actor: Actor, reason: str = "") -> Order:
        """Cancel an order that has not shipped yet and release its stock.

        Raises:
            OrderNotFound: order does not exist.
            Forbidden: the actor neither owns the order nor is staff.
            InvalidOrderStatus: the order already shipped or is terminal.
        """
        with UnitOfWork("cancel_order") as uow:
            order = self._get_or_raise(order_id)
            ensure_order_access(order, actor)
            if order.status not in CUSTOMER_CANCELLABLE_STATES:
                raise InvalidOrderStatus(
                    f"Order {order.order_number} cannot be cancelled "
                    f"once it is {order.status}.",
                    order_id=order.id,
                    current_status=order.status,
                )
            self._change_status(
                uow, order, actor, OrderStatus.CANCELLED, reason or "Cancelled by customer"
            )

        return self._reload(order)

    def bulk_update_order_status(
        self, actor: Actor, dto: BulkStatusUpdateDTO
    ) -> BulkUpdateResultDTO:
        """Apply the same transition to many orders, best-effort.

        Each order is updated in its own unit of work: a failing order is
        reported in ``failures`` and the rest of the batch still applies.
        Orders already in the target status count as matched but not
        modified.

        Raises:
            Forbidden: the actor is not staff.
            InvalidState: more orders than ``ORDER_BULK_MAX_SIZE``.
        """
        require_staff(actor, "bulk_update_order_status")
        max_size = settings.ORDER_BULK_MAX_SIZE
        if len(dto.order_ids) > max_size:
            raise InvalidState(
                f"Bulk updates accept at most {max_size} orders.",
                requested=len(dto.order_ids),
                limit=max_size,
            )

        log = logger.bind(actor_id=actor.actor_id, new_status=dto.new_status)
        matched = modified = 0
        failures: List[BulkFailureDTO] = []

        for order_id in dto.order_ids:
            try:
                changed = self._bulk_apply_one(actor, order_id, dto.new_status, dto.note)
            except DomainError as exc:
                if not isinstance(exc, OrderNotFound):
                    matched += 1
                failures.append(
                    BulkFailureDTO(order_id=order_id, code=exc.code, detail=exc.message)
                )
                log.warning("order.bulk_item_failed", order_id=str(order_id), code=exc.code)
                continue
            matched += 1
            modified += int(changed)

        log.info(
            "order.bulk_status_updated",
            requested=len(dto.order_ids),
            matched=matched,
            modified=modified,
            failed=len(failures),
        )
        return BulkUpdateResultDTO(matched=matched, modified=modified, failures=failures)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str, actor: Actor) -> Order:
        """Retrieve a single order visible to *actor*.

        Raises:
            OrderNotFound: if the order does not exist.
            Forbidden: the order belongs to someone else.
        """
        order = self._get_or_raise(order_id)
        ensure_order_access(order, actor)
        return order

    def list_orders(
        self, actor: Actor, filters: Optional[Dict[str, Any]] = None
    ) -> Iterable[Order]:
        """Orders of *actor*; staff see every order."""
        filters = dict(filters or {})
        if not actor.is_staff:
            filters["owner_id"] = actor.actor_id
        return self._order_repo.list(filters)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _create(self, uow: UnitOfWork, actor: Actor, dto: CreateOrderDTO) -> Order:
        snapshots = self._catalog.get_snapshots(item.product_id for item in dto.items)

        for item in dto.items:
            snapshot = snapshots.get(item.product_id)
            self._validate_line(item, snapshot)

        reservations = reservation_requests(dto.items)
        if reservations:
            self._ledger.adjust_stock_batch(uow, reservations, strict=True)

        amounts = compute_amounts(
            (
                snapshots[item.product_id].price,
                snapshots[item.product_id].effective_price,
                item.quantity,
            )
            for item in dto.items
        )

        payment_completed = (
            dto.payment_method == PaymentMethod.COD
            and settings.ORDER_COD_PAYMENT_COMPLETED
        )
        order = self._order_repo.create(
            uow,
            order_data={
                "owner_id": actor.actor_id,
                "shipping_address_id": dto.shipping_address_id,
                "payment_method": dto.payment_method,
                "payment_status": (
                    PaymentStatus.COMPLETED if payment_completed else PaymentStatus.PENDING
                ),
                "paid_at": timezone.now() if payment_completed else None,
                "items_total": amounts.items_total,
                "discount": amounts.discount,
                "shipping_charge": amounts.shipping_charge,
                "tax": amounts.tax,
                "total_amount": amounts.total_amount,
                "idempotency_key": dto.idempotency_key,
            },
            items=[
                {
                    "product_id": item.product_id,
                    "name": snapshots[item.product_id].name,
                    "quantity": item.quantity,
                    "unit_price": snapshots[item.product_id].price,
                    "discount_unit_price": snapshots[item.product_id].discount_price,
                    "size": item.size or "",
                    "color": item.color or "",
                }
                for item in dto.items
            ],
            actor_id=actor.actor_id,
            notes="Order created",
        )

        order.add_domain_event(OrderCreated(aggregate_id=order.id, payload=order_payload(order)))
        publish_after_commit(uow, order, self._event_bus)
        return order

    @staticmethod
    def _validate_line(item, snapshot: Optional[ProductSnapshot]) -> None:
        """Fail fast before the ledger's authoritative conditional update."""
        if snapshot is None:
            raise ProductNotFound(
                f"Product {item.product_id} not found.", product_id=item.product_id
            )
        if not snapshot.is_available:
            raise InactiveProduct(
                f"Product {snapshot.name} is no longer available.",
                product_id=item.product_id,
            )
        if not item.has_variant:
            return

        available = snapshot.stock_for(item.size, item.color)
        if available is None:
            raise VariantNotFound(
                f"Product {snapshot.name} has no {item.size}/{item.color} variant.",
                product_id=item.product_id,
                size=item.size,
                color=item.color,
            )
        if available < item.quantity:
            raise InsufficientStock(
                f"Insufficient stock for {snapshot.name} ({item.size}/{item.color}): "
                f"requested {item.quantity}, available {available}.",
                product_id=item.product_id,
                size=item.size,
                color=item.color,
                requested=item.quantity,
                available=available,
            )

    def _change_status(
        self,
        uow: UnitOfWork,
        order: Order,
        actor: Actor,
        new_status: str,
        note: str = "",
        shipping_details: Optional[ShippingDetailsDTO] = None,
    ) -> None:
        ensure_transition(order.id, order.status, new_status)

        now = timezone.now()
        changes: Dict[str, Any] = {}
        if new_status == OrderStatus.CANCELLED:
            release_order_stock(uow, self._ledger, order)
            changes.update(
                cancelled_at=now,
                cancellation_reason=note or None,
                stock_released_at=order.stock_released_at or now,
            )
        elif new_status == OrderStatus.DELIVERED:
            changes["delivered_at"] = now
            if (
                order.payment_method == PaymentMethod.COD
                and order.payment_status == PaymentStatus.PENDING
            ):
                changes.update(payment_status=PaymentStatus.COMPLETED, paid_at=now)
        if shipping_details is not None:
            changes["shipping_details"] = shipping_details.model_dump(mode="json")

        old_status = order.status
        self._order_repo.apply_transition(
            uow,
            order,
            HistoryKind.ORDER,
            new_status,
            actor_id=actor.actor_id,
            notes=note,
            **changes,
        )

        event_class = (
            OrderCancelled if new_status == OrderStatus.CANCELLED else OrderStatusChanged
        )
        order.add_domain_event(
            event_class(
                aggregate_id=order.id,
                payload=order_payload(order, old_status=old_status, new_status=new_status),
            )
        )
        publish_after_commit(uow, order, self._event_bus)

    def _bulk_apply_one(self, actor: Actor, order_id: UUID, new_status: str, note: str) -> bool:
        with UnitOfWork("bulk_update_order_status") as uow:
            order = self._get_or_raise(order_id)
            if order.status == new_status:
                return False
            self._change_status(uow, order, actor, new_status, note)
        return True

    def _find_replay(self, actor: Actor, key: str) -> Optional[Order]:
        existing = self._order_repo.get_by_idempotency_key(key)
        if existing is None:
            return None
        if not actor.owns(existing.owner_id):
            raise Forbidden(
                "Idempotency key already used by another customer.",
                idempotency_key=key,
            )
        logger.info(
            "order.idempotency_hit",
            order_id=str(existing.id),
            idempotency_key=key,
        )
        return existing

    def _get_or_raise(self, order_id) -> Order:
        order = self._order_repo.get_by_id(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.", order_id=order_id)
        return order

    def _reload(self, order: Order) -> Order:
        """Re-fetch with prefetched items and history for output."""
        return self._order_repo.get_by_id(str(order.id)) or order
