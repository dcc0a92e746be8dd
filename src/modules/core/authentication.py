"""Trusted-gateway actor authentication for Django REST Framework.

Credential checks happen upstream (API gateway / auth service).  The gateway
forwards the verified identity in two headers and this backend turns them
into an ``Actor``:

* ``X-Actor-Id``: opaque identifier of the purchasing actor.
* ``X-Actor-Role``: one of ``user``, ``admin``, ``superadmin``.

Security decisions
------------------
* The headers are trusted as-is; the service must only be reachable
  through the gateway.
* Unknown roles are rejected (401) instead of being downgraded.
* Missing ``X-Actor-Id`` means "no credentials" so DRF answers 401 through
  the ``IsAuthenticated`` default permission.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from django.db import models
from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

logger = structlog.get_logger(__name__)


class ActorRole(models.TextChoices):
    USER = "user", "User"
    ADMIN = "admin", "Admin"
    SUPERADMIN = "superadmin", "Super admin"


STAFF_ROLES: frozenset[str] = frozenset({ActorRole.ADMIN, ActorRole.SUPERADMIN})


@dataclass(frozen=True)
class Actor:
    """Identity of whoever invokes a use case.

    Also satisfies the small part of the Django user protocol DRF relies on
    (``is_authenticated``, ``pk``) so it can live on ``request.user``.
    """

    actor_id: str
    role: str = ActorRole.USER

    is_authenticated = True
    is_active = True

    @property
    def pk(self) -> str:
        return self.actor_id

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def owns(self, owner_id: str) -> bool:
        return self.actor_id == str(owner_id)

    def __str__(self) -> str:
        return f"{self.actor_id} ({self.role})"


class TrustedActorAuthentication(BaseAuthentication):
    """DRF authentication class reading the gateway identity headers."""

    id_header = "HTTP_X_ACTOR_ID"
    role_header = "HTTP_X_ACTOR_ROLE"

    def authenticate(self, request):
        """Return ``(Actor, None)`` or ``None`` (no credentials)."""
        actor_id = request.META.get(self.id_header, "").strip()
        if not actor_id:
            return None

        role = request.META.get(self.role_header, ActorRole.USER).strip().lower()
        if role not in ActorRole.values:
            logger.warning("actor_authentication_failed", actor_id=actor_id, role=role)
            raise AuthenticationFailed(f"Unknown actor role '{role}'.")

        actor = Actor(actor_id=actor_id, role=role)
        logger.debug("actor_authenticated", actor_id=actor_id, role=role)
        return (actor, None)

    def authenticate_header(self, request):
        """Value for the ``WWW-Authenticate`` response header on 401."""
        return 'Gateway realm="api"'
