"""
tests/test_api_routes.py -- Integration tests for the auth HTTP surface.

These tests exercise the full stack: FastAPI routing -> app-wide route guard
dependency -> AuthService -> CredentialStore -> response serialization.
Unit testing individual route functions would miss the guard, dependency
injection and error envelope -- integration tests are the right tool here.

Coverage:
  - POST /register: 201 shape, no-store, conflicts (409 + field), 422 input
  - POST /login: 200 by username/email any case, 404 unknown, 401 bad password
  - GET /me: token attaches the principal; every rejection is one 401 shape
  - Guard edge cases: wrong scheme, expired token, deleted principal

Fixtures used (from conftest.py):
  - api_client: (client, settings) -- TestClient around create_app()
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from auth.tokens import TokenService
from core.config import Settings
from tests.conftest import TEST_PASSWORD

UNAUTHENTICATED_BODY = {"error": {"code": "unauthenticated", "message": "Authentication required."}}


def _register(client: TestClient, username: str, email: str, password: str = TEST_PASSWORD):
    return client.post("/api/v1/auth/register", json={"username": username, "email": email, "password": password})


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    def test_register_returns_token_and_user(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = _register(client, "reg-alice", "reg-alice@example.com")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert set(data) == {"accessToken", "user"}
        assert set(data["user"]) == {"id", "username", "email"}
        assert data["user"]["username"] == "reg-alice"
        assert data["user"]["email"] == "reg-alice@example.com"
        assert isinstance(data["user"]["id"], int)
        assert resp.headers["cache-control"] == "no-store"
        assert TEST_PASSWORD not in resp.text

    def test_register_username_conflict_any_case(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        assert _register(client, "Reg-Bob", "reg-bob@example.com").status_code == 201
        resp = _register(client, "reg-bob", "reg-bob-2@example.com")
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "conflict"
        assert error["detail"] == "username"
        assert error["message"] == "Username or email already exists"

    def test_register_email_conflict_any_case(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        assert _register(client, "reg-carol", "reg-carol@example.com").status_code == 201
        resp = _register(client, "reg-caroline", "REG-CAROL@example.com")
        assert resp.status_code == 409
        assert resp.json()["error"]["detail"] == "email"

    def test_register_invalid_email(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = _register(client, "reg-dave", "not-an-email")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_register_short_password(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = _register(client, "reg-erin", "reg-erin@example.com", password="short")
        assert resp.status_code == 422

    def test_register_blank_username(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = _register(client, "   ", "reg-blank@example.com")
        assert resp.status_code == 422

    def test_register_is_public(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": "reg-frank", "email": "reg-frank@example.com", "password": TEST_PASSWORD},
            headers={"Authorization": "Bearer garbage"},
        )
        assert resp.status_code == 201


class TestLogin:
    def test_login_by_username_any_case(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        registered = _register(client, "login-bob", "login-bob@example.com").json()
        resp = client.post("/api/v1/auth/login", json={"usernameOrEmail": "LOGIN-BOB", "password": TEST_PASSWORD})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["user"] == registered["user"]
        assert data["accessToken"]
        assert resp.headers["cache-control"] == "no-store"

    def test_login_by_email(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        _register(client, "login-carol", "login-carol@example.com")
        resp = client.post(
            "/api/v1/auth/login", json={"usernameOrEmail": "Login-Carol@Example.com", "password": TEST_PASSWORD}
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["username"] == "login-carol"

    def test_login_wrong_password(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        _register(client, "login-dave", "login-dave@example.com")
        resp = client.post("/api/v1/auth/login", json={"usernameOrEmail": "login-dave", "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_login_unknown_user(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = client.post("/api/v1/auth/login", json={"usernameOrEmail": "nobody", "password": TEST_PASSWORD})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_login_short_password(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = client.post("/api/v1/auth/login", json={"usernameOrEmail": "nobody", "password": "short"})
        assert resp.status_code == 422


class TestGuardedRoute:
    def test_me_with_registration_token(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        registered = _register(client, "me-alice", "me-alice@example.com").json()
        resp = client.get("/api/v1/auth/me", headers=_bearer(registered["accessToken"]))
        assert resp.status_code == 200
        assert resp.json() == registered["user"]

    def test_me_with_login_token(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        registered = _register(client, "me-bob", "me-bob@example.com").json()
        token = client.post(
            "/api/v1/auth/login", json={"usernameOrEmail": "me-bob", "password": TEST_PASSWORD}
        ).json()["accessToken"]
        resp = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert resp.json()["id"] == registered["user"]["id"]

    def test_me_without_token(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json() == UNAUTHENTICATED_BODY
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_me_with_wrong_scheme(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert resp.status_code == 401
        assert resp.json() == UNAUTHENTICATED_BODY

    def test_me_with_forged_token(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer("not.a.token"))
        assert resp.status_code == 401
        assert resp.json() == UNAUTHENTICATED_BODY

    def test_me_with_expired_token(self, api_client: tuple[TestClient, Settings]) -> None:
        client, settings = api_client
        user_id = _register(client, "me-carol", "me-carol@example.com").json()["user"]["id"]
        stale = TokenService(settings).issue(user_id, issued_at=datetime.now(timezone.utc) - timedelta(hours=24, minutes=1))
        resp = client.get("/api/v1/auth/me", headers=_bearer(stale))
        assert resp.status_code == 401
        assert resp.json() == UNAUTHENTICATED_BODY

    def test_me_after_principal_deleted(self, api_client: tuple[TestClient, Settings]) -> None:
        client, _settings = api_client
        registered = _register(client, "me-dave", "me-dave@example.com").json()
        client.app.state.store.delete(registered["user"]["id"])
        resp = client.get("/api/v1/auth/me", headers=_bearer(registered["accessToken"]))
        assert resp.status_code == 401
        assert resp.json() == UNAUTHENTICATED_BODY
