"""Server-side order amount calculation.

``items_total`` is charged at list price and every catalog discount is
carried in ``discount``, so that::

    total_amount = items_total + shipping_charge + tax - discount

Shipping and tax are assessed on the net merchandise amount
(``items_total - discount``).  Client-supplied amounts are never trusted.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

from django.conf import settings

from modules.orders.constants import MONEY_QUANTUM


@dataclass(frozen=True)
class OrderAmounts:
    items_total: Decimal
    discount: Decimal
    shipping_charge: Decimal
    tax: Decimal

    @property
    def total_amount(self) -> Decimal:
        return self.items_total + self.shipping_charge + self.tax - self.discount


def compute_amounts(lines: Iterable[Tuple[Decimal, Decimal, int]]) -> OrderAmounts:
    """Price ``(list_price, effective_price, quantity)`` lines."""
    items_total = Decimal("0")
    discount = Decimal("0")
    for list_price, effective_price, quantity in lines:
        items_total += list_price * quantity
        discount += (list_price - effective_price) * quantity

    net = items_total - discount
    threshold = Decimal(str(settings.ORDER_FREE_SHIPPING_THRESHOLD))
    shipping = (
        Decimal("0")
        if net > threshold
        else Decimal(str(settings.ORDER_FLAT_SHIPPING_CHARGE))
    )
    tax_rate = Decimal(str(settings.ORDER_TAX_RATE))
    tax = (net * tax_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    return OrderAmounts(
        items_total=items_total.quantize(MONEY_QUANTUM),
        discount=discount.quantize(MONEY_QUANTUM),
        shipping_charge=shipping.quantize(MONEY_QUANTUM),
        tax=tax.quantize(MONEY_QUANTUM),
    )
