"""Event handlers for Orders domain events."""

from __future__ import annotations

import structlog

from modules.orders.notifications import CeleryOrderNotifier, IOrderNotifier
from shared.domain.bus import IEventHandler
from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)


class OrderNotificationHandler(IEventHandler[DomainEvent]):
    """Forward every order event to the customer notifier."""

    def __init__(self, notifier: IOrderNotifier) -> None:
        self._notifier = notifier

    def handle(self, event: DomainEvent) -> None:
        logger.info(
            "order.event_received",
            event_name=event.event_name,
            order_id=str(event.aggregate_id),
        )
        self._notifier.notify(event.event_name, event.payload)


order_notification_handler = OrderNotificationHandler(CeleryOrderNotifier())
