"""
tests/test_auth_routes.py -- Integration tests for session and credential routes.

Coverage:
  - POST /login: 200 with token and credential_state, 401 for wrong password,
    unknown email, and identities with no active directory principal
  - POST /logout: token is revoked, later use is 401
  - GET /me: principal, credential state and allowed actions
  - POST /validate-password: public, advisory PolicyResult
  - POST /forgot-password: 202 for known and unknown emails alike
  - POST /reset-password: token in body or return_url, mismatch, policy
    violation, expired/used token
  - POST /change-password: allowed in reset_required and clears it

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, stack)
  - seed: seed_principal helper
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import jwt

from auth.tokens import RESET_PURPOSE
from core.config import get_settings

PASSWORD = "Str0ng-Passw0rd!"
NEW = "N3w-Passw0rd!"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestLogin:
    def test_login_success(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "login-ok@example.com", PASSWORD, role="member")
        resp = client.post("/api/v1/auth/login", json={"email": "Login-OK@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        data = resp.json()
        assert data["access_token"]
        assert data["token_type"] == "bearer"
        assert data["role"] == "member"
        assert data["credential_state"] == "normal"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_wrong_password_and_unknown_email_match(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "login-bad@example.com", PASSWORD)
        wrong = client.post("/api/v1/auth/login", json={"email": "login-bad@example.com", "password": "nope"})
        unknown = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_inactive_principal_cannot_log_in(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "login-off@example.com", PASSWORD, is_active=False)
        resp = client.post("/api/v1/auth/login", json={"email": "login-off@example.com", "password": PASSWORD})
        assert resp.status_code == 401

    def test_reset_required_can_log_in(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "login-reset@example.com", PASSWORD, needs_password_reset=True)
        resp = client.post("/api/v1/auth/login", json={"email": "login-reset@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.json()["credential_state"] == "reset_required"


class TestLogout:
    def test_logout_revokes_token(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "logout@example.com", PASSWORD)
        token = stack.provider.sign_in("logout@example.com", PASSWORD)
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 200
        assert client.post("/api/v1/auth/logout", headers=_bearer(token)).status_code == 200
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 401

    def test_logout_without_token_is_401(self, api_client) -> None:
        client, _, _ = api_client
        assert client.post("/api/v1/auth/logout").status_code == 401


class TestMe:
    def test_me_for_viewer(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "me-viewer@example.com", PASSWORD, menu_access={"dashboard"})
        token = stack.provider.sign_in("me-viewer@example.com", PASSWORD)
        resp = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "me-viewer@example.com"
        assert data["role"] == "viewer"
        assert data["menu_access"] == ["dashboard"]
        assert "dashboard:access" in data["allowed_actions"]
        assert "users:read" not in data["allowed_actions"]

    def test_me_allowed_in_reset_required(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "me-reset@example.com", PASSWORD, needs_password_reset=True)
        token = stack.provider.sign_in("me-reset@example.com", PASSWORD)
        resp = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["credential_state"] == "reset_required"

    def test_me_unauthenticated(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/auth/me").status_code == 401


class TestValidatePassword:
    def test_public_and_advisory(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/validate-password", json={"password": "abc12345"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is False
        assert data["violations"] == [
            "Password must contain at least one uppercase letter.",
            "Password must contain at least one special character.",
        ]

    def test_strong(self, api_client) -> None:
        client, _, _ = api_client
        data = client.post("/api/v1/validate-password", json={"password": PASSWORD}).json()
        assert data == {"valid": True, "message": "Password is strong.", "violations": []}


class TestForgotAndReset:
    def test_forgot_is_202_for_unknown_email(self, api_client) -> None:
        client, _, stack = api_client
        before = len(stack.outbox.sent)
        resp = client.post("/api/v1/auth/forgot-password", json={"email": "nobody@example.com"})
        assert resp.status_code == 202
        assert len(stack.outbox.sent) == before

    def test_full_reset_flow_with_return_url(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "forgot@example.com", PASSWORD)
        resp = client.post("/api/v1/auth/forgot-password", json={"email": "forgot@example.com"})
        assert resp.status_code == 202
        email, link = stack.outbox.sent[-1]
        assert email == "forgot@example.com"

        principal = stack.store.get_user_by_email("forgot@example.com")
        assert principal.reset_requested_at is not None

        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"return_url": link, "new_password": NEW, "confirm_password": NEW},
        )
        assert resp.status_code == 200, resp.text
        assert stack.store.get_user(principal.id).reset_requested_at is None
        login = client.post("/api/v1/auth/login", json={"email": "forgot@example.com", "password": NEW})
        assert login.status_code == 200

        reused = client.post(
            "/api/v1/auth/reset-password",
            json={"return_url": link, "new_password": "An0ther-Passw0rd!", "confirm_password": "An0ther-Passw0rd!"},
        )
        assert reused.status_code == 400
        assert reused.json()["error"]["code"] == "invalid_or_expired_token"

    def test_reset_with_token_in_body(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "forgot-body@example.com", PASSWORD)
        client.post("/api/v1/auth/forgot-password", json={"email": "forgot-body@example.com"})
        token = stack.outbox.last_token_for("forgot-body@example.com")
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"token": token, "new_password": NEW, "confirm_password": NEW},
        )
        assert resp.status_code == 200

    def test_reset_mismatch(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "forgot-mismatch@example.com", PASSWORD)
        client.post("/api/v1/auth/forgot-password", json={"email": "forgot-mismatch@example.com"})
        token = stack.outbox.last_token_for("forgot-mismatch@example.com")
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"token": token, "new_password": NEW, "confirm_password": "different"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "confirmation_mismatch"

    def test_reset_policy_violation(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "forgot-weak@example.com", PASSWORD)
        client.post("/api/v1/auth/forgot-password", json={"email": "forgot-weak@example.com"})
        token = stack.outbox.last_token_for("forgot-weak@example.com")
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"token": token, "new_password": "abc12345", "confirm_password": "abc12345"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "policy_violation"

    def test_reset_expired_token(self, api_client, seed) -> None:
        client, _, stack = api_client
        principal = seed(stack, "forgot-expired@example.com", PASSWORD)
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        token = jwt.encode(
            {"sub": principal.id, "purpose": RESET_PURPOSE, "ver": 1, "iat": past - timedelta(hours=1), "exp": past},
            get_settings().secret_key,
            algorithm="HS256",
        )
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"token": token, "new_password": NEW, "confirm_password": NEW},
        )
        assert resp.status_code == 400
        assert "request a new one" in resp.json()["error"]["message"]

    def test_reset_url_without_token(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"return_url": "http://localhost:5173/reset-password", "new_password": NEW, "confirm_password": NEW},
        )
        assert resp.status_code == 400

    def test_reset_requires_some_token_source(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/reset-password", json={"new_password": NEW, "confirm_password": NEW})
        assert resp.status_code == 422


class TestChangePassword:
    def test_change_clears_reset_required(self, api_client, seed) -> None:
        client, _, stack = api_client
        principal = seed(stack, "change@example.com", PASSWORD, role="admin", needs_password_reset=True)
        token = stack.provider.sign_in("change@example.com", PASSWORD)
        assert client.get("/api/v1/admin-users", headers=_bearer(token)).status_code == 403

        resp = client.post(
            "/api/v1/auth/change-password",
            headers=_bearer(token),
            json={"new_password": NEW, "confirm_password": NEW},
        )
        assert resp.status_code == 200
        assert stack.store.get_user(principal.id).needs_password_reset is False
        assert client.get("/api/v1/admin-users", headers=_bearer(token)).status_code == 200

    def test_change_weak_password(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "change-weak@example.com", PASSWORD)
        token = stack.provider.sign_in("change-weak@example.com", PASSWORD)
        resp = client.post(
            "/api/v1/auth/change-password",
            headers=_bearer(token),
            json={"new_password": "short", "confirm_password": "short"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["violations"][0] == "Password must be at least 8 characters long."

    def test_change_rejects_password_over_bcrypt_limit(self, api_client, seed) -> None:
        client, _, stack = api_client
        seed(stack, "change-long@example.com", PASSWORD)
        token = stack.provider.sign_in("change-long@example.com", PASSWORD)
        long_password = NEW + "x" * 80
        resp = client.post(
            "/api/v1/auth/change-password",
            headers=_bearer(token),
            json={"new_password": long_password, "confirm_password": long_password},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["violations"] == ["Password must be at most 72 bytes long."]
        stack.provider.sign_in("change-long@example.com", PASSWORD)

    def test_change_unauthenticated(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/change-password", json={"new_password": NEW, "confirm_password": NEW})
        assert resp.status_code == 401
