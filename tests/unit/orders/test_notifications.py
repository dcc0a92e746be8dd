"""Unit tests for the post-commit notification chain.

event bus -> OrderNotificationHandler -> CeleryOrderNotifier -> Celery task
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from modules.orders.constants import OrderStatus
from modules.orders.events import OrderCreated
from modules.orders.handlers import OrderNotificationHandler
from modules.orders.notifications import CeleryOrderNotifier
from modules.orders.tasks import send_order_notification
from modules.products.exceptions import InsufficientStock

pytestmark = pytest.mark.unit

SUMMARY = {
    "id": "0190c0de-0000-7000-8000-000000000001",
    "order_number": "ORD-20260101-ABC123",
    "owner_id": "cust-001",
    "status": "confirmed",
    "payment_status": "completed",
    "payment_method": "CARD",
    "total_amount": "1000.00",
}


class TestOrderNotificationHandler:
    def test_forwards_event_name_and_payload(self):
        notifier = MagicMock()
        handler = OrderNotificationHandler(notifier)
        event = OrderCreated(aggregate_id=uuid4(), payload=SUMMARY)

        handler.handle(event)

        notifier.notify.assert_called_once_with("OrderCreated", SUMMARY)


class TestCeleryOrderNotifier:
    def test_enqueues_task(self):
        with patch("modules.orders.notifications.send_order_notification") as task:
            CeleryOrderNotifier().notify("OrderCreated", SUMMARY)
        task.delay.assert_called_once_with("OrderCreated", SUMMARY)

    def test_broker_failure_is_swallowed(self):
        with patch("modules.orders.notifications.send_order_notification") as task:
            task.delay.side_effect = ConnectionError("broker down")
            CeleryOrderNotifier().notify("OrderCreated", SUMMARY)
        task.delay.assert_called_once()

    def test_runs_eagerly_in_tests(self):
        CeleryOrderNotifier().notify("PaymentCompleted", SUMMARY)


class TestSendOrderNotificationTask:
    @pytest.mark.parametrize(
        "event_name,subject",
        [
            ("OrderCreated", "Order Confirmation - ORD-20260101-ABC123"),
            ("OrderStatusChanged", "Order ORD-20260101-ABC123 is now confirmed"),
            ("OrderRefunded", "Refund processed for order ORD-20260101-ABC123"),
        ],
    )
    def test_renders_subject(self, event_name, subject):
        assert send_order_notification(event_name, SUMMARY) == subject

    def test_unknown_event_is_skipped(self):
        assert send_order_notification("SomethingElse", SUMMARY) == ""


class TestEndToEndChain:
    def test_committed_order_creation_notifies_customer(
        self, place_order, django_capture_on_commit_callbacks
    ):
        with patch("modules.orders.notifications.send_order_notification") as task:
            with django_capture_on_commit_callbacks(execute=True):
                order = place_order()
                task.delay.assert_not_called()

        task.delay.assert_called_once()
        event_name, summary = task.delay.call_args.args
        assert event_name == "OrderCreated"
        assert summary["id"] == str(order.id)
        assert summary["status"] == OrderStatus.PENDING

    def test_failed_creation_notifies_nobody(
        self, place_order, django_capture_on_commit_callbacks
    ):
        with patch("modules.orders.notifications.send_order_notification") as task:
            with django_capture_on_commit_callbacks(execute=True):
                with pytest.raises(InsufficientStock):
                    place_order(quantity=99)

        task.delay.assert_not_called()
