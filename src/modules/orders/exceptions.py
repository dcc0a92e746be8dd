"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.  They derive
from the shared ``DomainError`` taxonomy so the API layer renders them with
a stable code through ``api_exception_handler``.
"""

from __future__ import annotations

from shared.domain.exceptions import InvalidState, NotFound


class OrderNotFound(NotFound):
    """The requested order does not exist."""


class InvalidOrderStatus(InvalidState):
    """A status transition outside the allowed table was attempted."""
