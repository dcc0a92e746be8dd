"""Order repository interface.

Extends ``IRepository[Order]`` with the methods required by the Order
aggregate: creation with items and the initial history row, guarded
status transitions, and idempotency-key look-up.

Every mutation receives the ``UnitOfWork`` it runs in.  The Service Layer
depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.core.transactions import UnitOfWork
    from modules.orders.models import Order


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    The Order aggregate includes OrderItem children and
    OrderStatusHistory records.
    """

    @abstractmethod
    def create(
        self,
        uow: UnitOfWork,
        order_data: Dict[str, Any],
        items: Sequence[Dict[str, Any]],
        actor_id: str = "",
        notes: str = "",
    ) -> Order:
        """Insert the order, its items and the initial history row."""

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with prefetched items and status history."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[Order]:
        """List orders with optional filters."""

    @abstractmethod
    def get_many(self, ids: Sequence[UUID]) -> List[Order]:
        """Retrieve the existing orders among *ids*."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        """Retrieve an order by its idempotency key."""

    @abstractmethod
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
        """Move one state machine of *order* and append its history row.

        The write is guarded by ``order.version``; losing the race raises
        ``StateConflict``.
        """

    @abstractmethod
    def store_payment_intent(self, uow: UnitOfWork, order: Order, intent_id: str) -> Order:
        """Record the latest payment intent reference of an unpaid order."""
