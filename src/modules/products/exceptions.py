"""Product and stock domain exceptions.

Raised by the catalog reader and the stock ledger.  Inside a unit of work
they abort the enclosing transaction; the API layer renders them through
the shared error envelope.
"""

from __future__ import annotations

from shared.domain.exceptions import DomainError, InvalidState, NotFound


class ProductNotFound(NotFound):
    """The product does not exist or has been soft-deleted."""


class InactiveProduct(InvalidState):
    """The product is inactive and cannot be ordered."""


class InsufficientStock(DomainError):
    """A decrement would take a variant's quantity below zero.

    Terminal for the given input: retrying the same request cannot succeed
    until stock is replenished.
    """

    code = "INSUFFICIENT_STOCK"
    default_message = "Not enough stock for the requested quantity."


class VariantNotFound(DomainError):
    """The ``(size, color)`` pair does not exist for the product."""

    code = "VARIANT_NOT_FOUND"
    default_message = "Stock variant not found."
