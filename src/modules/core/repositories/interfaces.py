"""Generic repository interface (Dependency Inversion Principle).

Provides ``IRepository[T]``, the read contract that every domain-specific
repository interface extends.  Mutations are declared by the concrete
interfaces because each of them takes the ``UnitOfWork`` it runs in.
Service-layer code depends on these abstractions, never on the ORM.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Iterable, Optional, TypeVar

T = TypeVar("T")


class IRepository(ABC, Generic[T]):
    """Base generic repository contract.

    Type parameter ``T`` represents the domain entity managed by the
    repository (e.g. ``Order``, ``Product``).
    """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[T]:
        """Retrieve an entity by its primary key (``None`` if absent)."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[T]:
        """List entities with optional filters."""
