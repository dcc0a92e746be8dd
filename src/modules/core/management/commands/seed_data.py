from __future__ import annotations

import random
from decimal import Decimal

from django.core.management.base import BaseCommand

from modules.core.authentication import Actor, ActorRole
from modules.orders.constants import OrderStatus, PaymentMethod
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.products.ledger import StockLedger
from modules.products.models import Product, ProductStatus, StockVariant
from modules.products.repositories.django_repository import ProductDjangoRepository

SIZES = ("S", "M", "L", "XL")
COLORS = ("black", "white", "navy")

CATALOG = [
    ("TEE-001", "Classic Cotton Tee", Decimal("499.00"), None),
    ("TEE-002", "Graphic Tee", Decimal("699.00"), Decimal("549.00")),
    ("HOOD-001", "Zip Hoodie", Decimal("1899.00"), None),
    ("HOOD-002", "Oversized Hoodie", Decimal("2199.00"), Decimal("1799.00")),
    ("JNS-001", "Slim Fit Jeans", Decimal("1599.00"), None),
    ("JNS-002", "Relaxed Jeans", Decimal("1699.00"), None),
    ("JKT-001", "Denim Jacket", Decimal("2999.00"), Decimal("2499.00")),
    ("SHR-001", "Linen Shirt", Decimal("1299.00"), None),
]

CUSTOMERS = ("cust-ana", "cust-bruno", "cust-carla", "cust-daniel", "cust-elena")


class Command(BaseCommand):
    help = "Seed database with a development catalog and sample orders."

    def add_arguments(self, parser):
        parser.add_argument("--orders", type=int, default=15)

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        products = self._seed_products()
        orders_created = self._seed_orders(products, options["orders"])

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"products={len(products)}, "
                f"variants={StockVariant.objects.count()}, "
                f"orders={orders_created}"
            )
        )

    def _seed_products(self) -> list[Product]:
        self.stdout.write("Creating products...")
        products: list[Product] = []
        for sku, name, price, discount_price in CATALOG:
            product, created = Product.objects.get_or_create(
                sku=sku,
                defaults={
                    "name": name,
                    "price": price,
                    "discount_price": discount_price,
                    "status": ProductStatus.ACTIVE,
                },
            )
            if created:
                StockVariant.objects.bulk_create(
                    StockVariant(
                        product=product,
                        size=size,
                        color=color,
                        quantity=random.randint(5, 50),
                    )
                    for size in SIZES
                    for color in COLORS
                )
            products.append(product)
        self.stdout.write(self.style.SUCCESS("Creating products... Done!"))
        return products

    def _seed_orders(self, products: list[Product], count: int) -> int:
        if Order.objects.exists():
            self.stdout.write("Orders already present, skipping.")
            return 0

        self.stdout.write("Creating orders...")
        ledger = StockLedger()
        service = OrderService(
            order_repository=OrderDjangoRepository(),
            catalog_reader=ProductDjangoRepository(),
            ledger=ledger,
        )
        staff = Actor(actor_id="seed-admin", role=ActorRole.ADMIN)
        progressions = [
            [],
            [OrderStatus.CONFIRMED],
            [OrderStatus.CONFIRMED, OrderStatus.PROCESSING],
            [OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED],
            [
                OrderStatus.CONFIRMED,
                OrderStatus.PROCESSING,
                OrderStatus.SHIPPED,
                OrderStatus.DELIVERED,
            ],
            [OrderStatus.CANCELLED],
        ]

        for _ in range(count):
            customer = Actor(actor_id=random.choice(CUSTOMERS))
            picked = random.sample(products, k=random.randint(1, 3))
            dto = CreateOrderDTO(
                items=[
                    CreateOrderItemDTO(
                        product_id=product.id,
                        quantity=random.randint(1, 2),
                        size=random.choice(SIZES),
                        color=random.choice(COLORS),
                    )
                    for product in picked
                ],
                shipping_address_id=f"addr-{customer.actor_id}",
                payment_method=random.choice(PaymentMethod.values),
            )
            order = service.create_order(customer, dto)
            for new_status in random.choice(progressions):
                order = service.update_status(order.id, staff, new_status, "Seeded")

        self.stdout.write(self.style.SUCCESS("Creating orders... Done!"))
        return count
