from __future__ import annotations

from decimal import Decimal

import pytest

from django.core.cache import cache

from rest_framework.test import APIClient

from config import celery_app
from modules.core.authentication import Actor, ActorRole
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.payments.dtos import VerifyPaymentDTO
from modules.payments.refunds import RefundService
from modules.payments.services import PaymentService
from modules.payments.verifiers import MockPaymentVerifier
from modules.products.ledger import StockLedger
from modules.products.models import Product, ProductStatus, StockVariant
from modules.products.repositories.django_repository import ProductDjangoRepository


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _isolated_runtime():
    """Fresh throttle counters and in-process Celery for every test."""
    cache.clear()
    previous = celery_app.conf.task_always_eager
    celery_app.conf.task_always_eager = True
    yield
    celery_app.conf.task_always_eager = previous
    cache.clear()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer():
    return Actor(actor_id="cust-001")


@pytest.fixture()
def other_customer():
    return Actor(actor_id="cust-002")


@pytest.fixture()
def staff():
    return Actor(actor_id="admin-001", role=ActorRole.ADMIN)


def _client_for(actor: Actor) -> APIClient:
    client = APIClient()
    client.credentials(HTTP_X_ACTOR_ID=actor.actor_id, HTTP_X_ACTOR_ROLE=actor.role)
    return client


@pytest.fixture()
def customer_client(customer):
    return _client_for(customer)


@pytest.fixture()
def other_customer_client(other_customer):
    return _client_for(other_customer)


@pytest.fixture()
def staff_client(staff):
    return _client_for(staff)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_product():
    """Factory: a product with ``{(size, color): quantity}`` variants."""

    def _make(sku="TEE-001", price="500.00", variants=None, **overrides):
        product = Product.objects.create(
            sku=sku,
            name=overrides.pop("name", f"Product {sku}"),
            price=Decimal(price),
            status=overrides.pop("status", ProductStatus.ACTIVE),
            **overrides,
        )
        for (size, color), quantity in (variants or {("M", "black"): 5}).items():
            StockVariant.objects.create(
                product=product, size=size, color=color, quantity=quantity
            )
        return product

    return _make


@pytest.fixture()
def tee(make_product):
    """500.00 tee with 5 units of M/black."""
    return make_product()


@pytest.fixture()
def stock_of():
    """Current quantity of a variant, read from the database."""

    def _stock_of(product, size="M", color="black") -> int:
        return StockVariant.objects.get(product=product, size=size, color=color).quantity

    return _stock_of


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture()
def ledger():
    return StockLedger()


@pytest.fixture()
def order_repository():
    return OrderDjangoRepository()


@pytest.fixture()
def order_service(order_repository, ledger):
    return OrderService(
        order_repository=order_repository,
        catalog_reader=ProductDjangoRepository(),
        ledger=ledger,
    )


@pytest.fixture()
def payment_service(order_repository):
    return PaymentService(
        order_repository=order_repository,
        verifier=MockPaymentVerifier(),
    )


@pytest.fixture()
def refund_service(order_repository, ledger):
    return RefundService(order_repository=order_repository, ledger=ledger)


@pytest.fixture()
def place_order(order_service, customer, tee):
    """Create an order of ``quantity`` tees (M/black) for ``actor``."""

    def _place(actor=None, quantity=2, product=None, **dto_fields):
        product = product or tee
        dto = CreateOrderDTO(
            items=[
                CreateOrderItemDTO(
                    product_id=product.id, quantity=quantity, size="M", color="black"
                )
            ],
            shipping_address_id=dto_fields.pop("shipping_address_id", "addr-1"),
            **dto_fields,
        )
        return order_service.create_order(actor or customer, dto)

    return _place


@pytest.fixture()
def paid_order(place_order, payment_service, customer):
    """Order of 2 tees paid by card (status ``confirmed``)."""
    order = place_order(payment_method="CARD")
    intent = payment_service.create_payment_intent(order.id, customer)
    return payment_service.verify_payment(
        order.id,
        customer,
        VerifyPaymentDTO(
            payment_intent_id=intent.payment_intent_id, transaction_id="txn_paid_001"
        ),
    )
