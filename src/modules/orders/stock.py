"""Order-side use of the stock ledger.

Only order lines carrying a ``(size, color)`` variant are tracked.  An
order reserves its variant quantities once, at creation, and gives them
back at most once (``Order.stock_released_at``), whether the release comes
from a cancellation or a refund.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Sequence
from uuid import UUID

import structlog

from modules.products.dtos import StockAdjustmentDTO

if TYPE_CHECKING:
    from modules.core.transactions import UnitOfWork
    from modules.orders.dtos import CreateOrderItemDTO
    from modules.orders.models import Order
    from modules.products.ledger import StockLedger

logger = structlog.get_logger(__name__)


def reservation_requests(items: Iterable[CreateOrderItemDTO]) -> List[StockAdjustmentDTO]:
    return [
        StockAdjustmentDTO(
            product_id=item.product_id,
            size=item.size,
            color=item.color,
            quantity_change=-item.quantity,
        )
        for item in items
        if item.has_variant
    ]


def restock_requests(order: Order) -> List[StockAdjustmentDTO]:
    return [
        StockAdjustmentDTO(
            product_id=item.product_id,
            size=item.size,
            color=item.color,
            quantity_change=item.quantity,
        )
        for item in order.variant_lines()
    ]


def release_order_stock(uow: UnitOfWork, ledger: StockLedger, order: Order) -> int:
    """Return the order's reserved quantities to the ledger.

    Strict: any failing variant aborts the caller's unit of work.  Returns
    the number of variant lines restored (``0`` when already released).
    The caller records the release by setting ``stock_released_at`` in the
    same unit of work.
    """
    return release_orders_stock(uow, ledger, [order])[order.id]


def release_orders_stock(
    uow: UnitOfWork, ledger: StockLedger, orders: Sequence[Order]
) -> Dict[UUID, int]:
    """Release several orders' stock through a single strict ledger batch.

    The restock lines of every order are merged so the ledger touches the
    variant rows once, in its global ``(product, size, color)`` order, the
    same order ``create_order`` reserves them in.  Returns the variant
    lines restored per order id.
    """
    restored: Dict[UUID, int] = {}
    requests: List[StockAdjustmentDTO] = []
    for order in orders:
        if order.stock_released:
            logger.info("order.stock_already_released", order_id=str(order.id))
            restored[order.id] = 0
            continue
        lines = restock_requests(order)
        restored[order.id] = len(lines)
        requests.extend(lines)

    if not requests:
        return restored

    result = ledger.adjust_stock_batch(uow, requests, strict=True)
    logger.info(
        "order.stock_released",
        order_ids=[str(order_id) for order_id, lines in restored.items() if lines],
        variants=result.applied_count,
        units=result.units_changed,
    )
    return restored
