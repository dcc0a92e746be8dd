"""Unit of work: the explicit transaction scope of a compound operation.

Every mutating repository/ledger call receives the ``UnitOfWork`` it runs
in; there is no ambient "current transaction" object.  The unit of work:

- opens a ``transaction.atomic()`` block (a savepoint when nested);
- bounds the operation with a time budget (``ORDER_TRANSACTION_TIMEOUT``):
  a database statement timeout where the backend supports it, plus a
  deadline checked at every mutation and once more before commit;
- rolls back and raises ``TransactionTimeout`` when the budget is exceeded
  or a lock wait times out, and ``StateConflict`` when the database aborts
  it on a deadlock or serialization failure;
- registers after-commit callbacks (notifications) that never run when the
  unit of work aborts.
"""

from __future__ import annotations

import time
from types import TracebackType
from typing import Callable, Optional, Type

import structlog
from django.conf import settings
from django.db import DEFAULT_DB_ALIAS, OperationalError, connections, transaction

from shared.domain.exceptions import StateConflict, TransactionTimeout

logger = structlog.get_logger(__name__)

# Lock waits that ran out of time, on PostgreSQL and SQLite.
_TIMEOUT_MARKERS = (
    "statement timeout",
    "canceling statement",
    "lock timeout",
    "database is locked",
    "database table is locked",
)

# The database aborted this transaction to break a lock cycle or keep
# serializability.
_CONFLICT_MARKERS = (
    "deadlock detected",
    "could not serialize access",
)


class UnitOfWork:
    """Context manager wrapping one all-or-nothing compound operation.

    Usage::

        with UnitOfWork("create_order") as uow:
            ledger.adjust_stock(uow, ...)
            repo.create(uow, ...)
            uow.on_commit(lambda: bus.publish_all(events))
    """

    def __init__(
        self,
        name: str,
        timeout: Optional[float] = None,
        using: str = DEFAULT_DB_ALIAS,
    ) -> None:
        if timeout is None:
            timeout = settings.ORDER_TRANSACTION_TIMEOUT
        self.name = name
        self.timeout = float(timeout)
        self.using = using
        self._atomic: Optional[transaction.Atomic] = None
        self._started = 0.0
        self._deadline = 0.0
        self._log = logger.bind(unit_of_work=name)

    # ------------------------------------------------------------------
    # Context manager protocol
    # ------------------------------------------------------------------

    def __enter__(self) -> UnitOfWork:
        if self._atomic is not None:
            raise RuntimeError(f"UnitOfWork '{self.name}' is already open.")
        self._atomic = transaction.atomic(using=self.using)
        self._atomic.__enter__()
        self._started = time.monotonic()
        self._deadline = self._started + self.timeout
        self._apply_statement_timeout()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        atomic, self._atomic = self._atomic, None
        if atomic is None:
            raise RuntimeError(f"UnitOfWork '{self.name}' is not open.")

        if exc_type is None and self.expired:
            timeout_error = self._timeout_error("commit")
            atomic.__exit__(TransactionTimeout, timeout_error, None)
            self._log.warning("uow.timed_out", stage="commit", elapsed=self.elapsed)
            raise timeout_error

        atomic.__exit__(exc_type, exc, tb)

        if exc_type is None:
            self._log.debug("uow.committed", elapsed=self.elapsed)
            return False

        self._log.info(
            "uow.rolled_back",
            elapsed=self.elapsed,
            error=exc_type.__name__,
        )
        if isinstance(exc, OperationalError):
            message = str(exc).lower()
            if _matches(message, _CONFLICT_MARKERS):
                raise StateConflict(
                    f"Operation '{self.name}' lost a lock race and was rolled back.",
                    operation=self.name,
                ) from exc
            if _matches(message, _TIMEOUT_MARKERS):
                raise self._timeout_error("statement") from exc
        return False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._atomic is not None

    @property
    def elapsed(self) -> float:
        return round(time.monotonic() - self._started, 4)

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._deadline

    def checkpoint(self, stage: str) -> None:
        """Raise ``TransactionTimeout`` if the time budget is exhausted.

        Raised inside the ``with`` block, the exception rolls back every
        mutation applied so far.
        """
        self._ensure_active()
        if self.expired:
            self._log.warning("uow.timed_out", stage=stage, elapsed=self.elapsed)
            raise self._timeout_error(stage)

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run *callback* after the outermost transaction commits."""
        self._ensure_active()
        transaction.on_commit(callback, using=self.using)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_active(self) -> None:
        if self._atomic is None:
            raise RuntimeError(f"UnitOfWork '{self.name}' is not open.")

    def _apply_statement_timeout(self) -> None:
        connection = connections[self.using]
        if connection.vendor != "postgresql":
            return
        timeout_ms = max(int(self.timeout * 1000), 1)
        with connection.cursor() as cursor:
            cursor.execute(f"SET LOCAL statement_timeout = {timeout_ms}")

    def _timeout_error(self, stage: str) -> TransactionTimeout:
        return TransactionTimeout(
            f"Operation '{self.name}' exceeded {self.timeout}s and was rolled back.",
            operation=self.name,
            stage=stage,
        )


def _matches(message: str, markers: tuple) -> bool:
    return any(marker in message for marker in markers)
