"""Concurrency integration tests.

Proves that the stock ledger's conditional update serializes concurrent
reservations, and that the version guard lets exactly one of two racing
transitions win.

Scenario:
- Tee with **stock = 5** (M/black).
- 10 threads attempt to buy 1 unit each simultaneously.
- Exactly 5 succeed, 5 raise ``InsufficientStock``.
- Final stock is 0 (never negative).

Uses ``TransactionTestCase`` so each thread sees committed data and
row-level locking behaves realistically.  Needs a database with row locks
(PostgreSQL); skipped on SQLite.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from django.db import connection, connections
from django.test import TransactionTestCase

from modules.core.authentication import Actor, ActorRole
from modules.orders.constants import OrderStatus
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.products.exceptions import InsufficientStock
from modules.products.ledger import StockLedger
from modules.products.models import Product, ProductStatus, StockVariant
from modules.products.repositories.django_repository import ProductDjangoRepository
from shared.domain.exceptions import InvalidState, StateConflict

pytestmark = pytest.mark.integration

logger = logging.getLogger(__name__)

INITIAL_STOCK = 5
NUM_WORKERS = 10


def _service() -> OrderService:
    return OrderService(
        order_repository=OrderDjangoRepository(),
        catalog_reader=ProductDjangoRepository(),
        ledger=StockLedger(),
    )


@pytest.mark.skipif(
    not connection.features.has_select_for_update,
    reason="row-level locking requires PostgreSQL",
)
class TestStockConcurrency(TransactionTestCase):
    """Prove atomic stock reservation under concurrent load."""

    def setUp(self):
        self.product = Product.objects.create(
            sku="RACE-TEE",
            name="Race Tee",
            price=Decimal("500.00"),
            status=ProductStatus.ACTIVE,
        )
        StockVariant.objects.create(
            product=self.product, size="M", color="black", quantity=INITIAL_STOCK
        )

    def _buy_one(self, worker: int) -> str:
        try:
            dto = CreateOrderDTO(
                items=[
                    CreateOrderItemDTO(
                        product_id=self.product.id, quantity=1, size="M", color="black"
                    )
                ],
                shipping_address_id=f"addr-{worker}",
            )
            _service().create_order(Actor(actor_id=f"cust-{worker}"), dto)
            return "success"
        except InsufficientStock:
            return "insufficient"
        finally:
            connections.close_all()

    def test_only_available_units_are_sold(self):
        with ThreadPoolExecutor(max_workers=NUM_WORKERS) as executor:
            results = list(executor.map(self._buy_one, range(NUM_WORKERS)))

        logger.info("Concurrency results: %s", results)
        self.assertEqual(results.count("success"), INITIAL_STOCK)
        self.assertEqual(results.count("insufficient"), NUM_WORKERS - INITIAL_STOCK)

        variant = StockVariant.objects.get(product=self.product)
        self.assertEqual(variant.quantity, 0)
        self.assertEqual(Order.objects.count(), INITIAL_STOCK)

    def test_racing_transitions_have_one_winner(self):
        order = _service().create_order(
            Actor(actor_id="cust-race"),
            CreateOrderDTO(
                items=[
                    CreateOrderItemDTO(
                        product_id=self.product.id, quantity=2, size="M", color="black"
                    )
                ],
                shipping_address_id="addr-race",
            ),
        )
        staff = Actor(actor_id="admin-race", role=ActorRole.ADMIN)
        barrier = threading.Barrier(2)

        def _move(new_status: str) -> str:
            try:
                barrier.wait()
                _service().update_status(order.id, staff, new_status)
                return "success"
            except (StateConflict, InvalidState):
                return "lost"
            finally:
                connections.close_all()

        with ThreadPoolExecutor(max_workers=2) as executor:
            results = list(
                executor.map(_move, [OrderStatus.CONFIRMED, OrderStatus.CANCELLED])
            )

        self.assertEqual(sorted(results), ["lost", "success"])
        stored = Order.objects.get(id=order.id)
        self.assertEqual(stored.version, 2)
        self.assertEqual(stored.status_history.count(), 2)

        variant = StockVariant.objects.get(product=self.product)
        expected = INITIAL_STOCK if stored.status == OrderStatus.CANCELLED else INITIAL_STOCK - 2
        self.assertEqual(variant.quantity, expected)
