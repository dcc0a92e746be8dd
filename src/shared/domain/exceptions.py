"""Domain error taxonomy shared by every bounded context.

Each error carries a stable ``code`` (part of the public API contract), a
``retryable`` flag telling callers whether the same input may succeed later,
and a ``context`` dict with the identifiers needed to act on the failure
(order id, product id, variant...).

Raising any of these inside a ``UnitOfWork`` aborts the transaction.  The API
layer renders them through ``modules.core.exceptions.api_exception_handler``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for every business-rule violation."""

    code: str = "DOMAIN_ERROR"
    retryable: bool = False
    default_message: str = "Domain rule violated."

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context: Dict[str, Any] = {
            key: str(value) if value is not None else None
            for key, value in context.items()
        }
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "detail": self.message,
            "context": self.context,
            "retryable": self.retryable,
        }


class NotFound(DomainError):
    code = "NOT_FOUND"
    default_message = "Resource not found."


class Forbidden(DomainError):
    code = "FORBIDDEN"
    default_message = "Actor is not allowed to perform this operation."


class InvalidState(DomainError):
    code = "INVALID_STATE"
    default_message = "Operation is not legal for the current status."


class StateConflict(DomainError):
    """Lost an optimistic-concurrency race; retry with refreshed state."""

    code = "STATE_CONFLICT"
    retryable = True
    default_message = "Resource was modified concurrently."


class TransactionTimeout(DomainError):
    code = "TRANSACTION_TIMEOUT"
    retryable = True
    default_message = "Transaction exceeded its time budget and was rolled back."
