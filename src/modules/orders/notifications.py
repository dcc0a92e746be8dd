"""Fire-and-forget notifier used after an order operation commits."""

from __future__ import annotations

from typing import Any, Dict, Protocol

import structlog

from modules.orders.tasks import send_order_notification

logger = structlog.get_logger(__name__)


class IOrderNotifier(Protocol):
    def notify(self, event_name: str, order_summary: Dict[str, Any]) -> None: ...


class CeleryOrderNotifier:
    """Enqueue ``send_order_notification`` on the Celery broker.

    A broker outage must not fail an operation that has already committed:
    enqueue errors are logged with the order context and dropped.
    """

    def notify(self, event_name: str, order_summary: Dict[str, Any]) -> None:
        try:
            send_order_notification.delay(event_name, order_summary)
        except Exception:
            logger.exception(
                "notification.enqueue_failed",
                event_name=event_name,
                order_id=order_summary.get("id"),
            )
            return
        logger.debug(
            "notification.enqueued",
            event_name=event_name,
            order_id=order_summary.get("id"),
        )
