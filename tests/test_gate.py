"""
tests/test_gate.py -- AuthenticationGate and resolve_identity().

The gate never rejects a request by itself: a bad cookie leaves the request
unauthenticated and the route decides. The principal is re-read on every
request, so blocking, unverifying or promoting a user applies immediately.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from auth.middleware import resolve_identity
from auth.models import Principal, Role
from auth.schema import utcnow
from auth.tokens import TokenType


def _me(api, access_token: str):
    api.client.cookies.clear()
    return api.client.get("/api/v1/auth/me", headers={"Cookie": f"accessToken={access_token}"})


class TestResolveIdentity:
    def test_valid_access_token(self, codec, user_store, make_user) -> None:
        user = make_user()
        identity = resolve_identity(codec, user_store, codec.issue(user, TokenType.ACCESS))
        assert identity is not None
        assert identity.user_id == user.id
        assert identity.email == user.email
        assert identity.is_admin is False

    def test_missing_token(self, codec, user_store) -> None:
        assert resolve_identity(codec, user_store, None) is None
        assert resolve_identity(codec, user_store, "") is None

    def test_refresh_token_refused(self, codec, user_store, make_user) -> None:
        user = make_user()
        assert resolve_identity(codec, user_store, codec.issue(user, TokenType.REFRESH)) is None

    def test_expired_token(self, codec, user_store, make_user) -> None:
        user = make_user()
        token = codec.issue(user, TokenType.ACCESS, ttl_seconds=30, now=utcnow() - timedelta(minutes=5))
        assert resolve_identity(codec, user_store, token) is None

    def test_unknown_principal(self, codec, user_store) -> None:
        ghost = Principal(id=999, email="ghost@example.com", full_name="Ghost", password_hash="x")
        assert resolve_identity(codec, user_store, codec.issue(ghost, TokenType.ACCESS)) is None

    def test_blocked_and_unverified(self, codec, user_store, make_user) -> None:
        blocked = make_user(email="blocked@example.com", active=False)
        unverified = make_user(email="pending@example.com", verified=False)
        assert resolve_identity(codec, user_store, codec.issue(blocked, TokenType.ACCESS)) is None
        assert resolve_identity(codec, user_store, codec.issue(unverified, TokenType.ACCESS)) is None

    def test_role_comes_from_store_not_token(self, codec, user_store, make_user) -> None:
        user = make_user()
        token = codec.issue(user, TokenType.ACCESS)
        user_store.update_user(user.id, role=Role.ADMIN)
        assert resolve_identity(codec, user_store, token).is_admin is True

    def test_store_errors_propagate(self, codec, user_store, make_user, monkeypatch: pytest.MonkeyPatch) -> None:
        user = make_user()

        def broken(email):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(user_store, "get_by_email", broken)
        with pytest.raises(RuntimeError):
            resolve_identity(codec, user_store, codec.issue(user, TokenType.ACCESS))


class TestGate:
    def test_public_route_survives_garbage_cookie(self, api) -> None:
        api.client.cookies.clear()
        resp = api.client.get("/api/v1/health", headers={"Cookie": "accessToken=%%%garbage"})
        assert resp.status_code == 200

    def test_refresh_token_in_access_slot(self, api, make_user) -> None:
        user = make_user()
        assert _me(api, api.codec.issue(user, TokenType.REFRESH)).status_code == 401

    def test_block_applies_on_next_request(self, api, make_user) -> None:
        user = make_user()
        token = api.codec.issue(user, TokenType.ACCESS)
        assert _me(api, token).status_code == 200
        api.users.update_user(user.id, is_active=False)
        assert _me(api, token).status_code == 401

    def test_unverify_applies_on_next_request(self, api, make_user) -> None:
        user = make_user()
        token = api.codec.issue(user, TokenType.ACCESS)
        assert _me(api, token).status_code == 200
        api.users.set_email_verified(user.id, False)
        assert _me(api, token).status_code == 401

    def test_promotion_applies_on_next_request(self, api, make_user) -> None:
        user = make_user()
        api.client.cookies.clear()
        headers = {"Cookie": f"accessToken={api.codec.issue(user, TokenType.ACCESS)}"}
        path = f"/api/v1/admin/users/{user.id}/revoke-sessions"

        assert api.client.post(path, headers=headers).status_code == 403
        api.users.update_user(user.id, role=Role.ADMIN)
        assert api.client.post(path, headers=headers).status_code == 200

    def test_store_failure_leaves_request_unauthenticated(
        self, api, make_user, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        user = make_user()

        def broken(email):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(api.users, "get_by_email", broken)
        with caplog.at_level(logging.ERROR, logger="resumeagent.auth.gate"):
            resp = _me(api, api.codec.issue(user, TokenType.ACCESS))
        assert resp.status_code == 401
        assert "Identity lookup failed" in caplog.text
