"""Unit tests for the gateway actor authentication."""

from __future__ import annotations

import pytest

from rest_framework.exceptions import AuthenticationFailed
from rest_framework.test import APIRequestFactory

from modules.core.authentication import Actor, ActorRole, TrustedActorAuthentication

pytestmark = pytest.mark.unit


@pytest.fixture()
def backend():
    return TrustedActorAuthentication()


@pytest.fixture()
def factory():
    return APIRequestFactory()


class TestActor:
    def test_user_is_not_staff(self):
        assert Actor(actor_id="u1").is_staff is False

    @pytest.mark.parametrize("role", [ActorRole.ADMIN, ActorRole.SUPERADMIN, "admin"])
    def test_admin_roles_are_staff(self, role):
        assert Actor(actor_id="a1", role=role).is_staff is True

    def test_owns_compares_ids_as_strings(self):
        assert Actor(actor_id="42").owns(42) is True
        assert Actor(actor_id="42").owns("43") is False

    def test_behaves_like_an_authenticated_user(self):
        actor = Actor(actor_id="u1")
        assert actor.is_authenticated is True
        assert actor.pk == "u1"


class TestTrustedActorAuthentication:
    def test_no_header_means_no_credentials(self, backend, factory):
        assert backend.authenticate(factory.get("/")) is None

    def test_blank_header_means_no_credentials(self, backend, factory):
        assert backend.authenticate(factory.get("/", HTTP_X_ACTOR_ID="  ")) is None

    def test_role_defaults_to_user(self, backend, factory):
        actor, _ = backend.authenticate(factory.get("/", HTTP_X_ACTOR_ID="cust-9"))
        assert actor == Actor(actor_id="cust-9", role=ActorRole.USER)

    def test_role_is_case_insensitive(self, backend, factory):
        actor, _ = backend.authenticate(
            factory.get("/", HTTP_X_ACTOR_ID="adm", HTTP_X_ACTOR_ROLE="SuperAdmin")
        )
        assert actor.role == ActorRole.SUPERADMIN
        assert actor.is_staff is True

    def test_unknown_role_is_rejected(self, backend, factory):
        with pytest.raises(AuthenticationFailed):
            backend.authenticate(
                factory.get("/", HTTP_X_ACTOR_ID="x", HTTP_X_ACTOR_ROLE="root")
            )
