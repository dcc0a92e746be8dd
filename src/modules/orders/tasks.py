"""Asynchronous tasks of the orders module.

``send_order_notification`` stands in for the customer e-mail: it renders
the subject for the event and logs the message instead of delivering it.
"""

from __future__ import annotations

from typing import Any, Dict

import structlog
from celery import shared_task

logger = structlog.get_logger(__name__)

NOTIFICATION_SUBJECTS: Dict[str, str] = {
    "OrderCreated": "Order Confirmation - {order_number}",
    "OrderStatusChanged": "Order {order_number} is now {status}",
    "OrderCancelled": "Order {order_number} has been cancelled",
    "PaymentCompleted": "Payment received for order {order_number}",
    "PaymentFailed": "Payment failed for order {order_number}",
    "OrderRefunded": "Refund processed for order {order_number}",
}


@shared_task(name="orders.send_order_notification", ignore_result=True)
def send_order_notification(event_name: str, order_summary: Dict[str, Any]) -> str:
    """Render and "send" the notification for *event_name*.

    Unknown events are logged and skipped.
    """
    template = NOTIFICATION_SUBJECTS.get(event_name)
    log = logger.bind(
        event_name=event_name,
        order_id=order_summary.get("id"),
        recipient=order_summary.get("owner_id"),
    )
    if template is None:
        log.warning("notification.unknown_event")
        return ""

    subject = template.format(**order_summary)
    log.info(
        "notification.sent",
        subject=subject,
        total_amount=order_summary.get("total_amount"),
    )
    return subject
