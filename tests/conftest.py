"""
tests/conftest.py -- Shared test fixtures for Gatehouse.

This module provides:
  - settings: explicit Settings with a fixed secret and bcrypt cost 4
  - clock: a controllable clock for TokenService expiry tests
  - hasher / store / tokens / service: wired auth components for unit tests
  - api_client: TestClient around create_app() for HTTP integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs plain-def route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit-test stores run on one thread, so :memory: is fine there.

bcrypt cost 4 is the minimum bcrypt accepts; it keeps the suite fast while
exercising the real library.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenService
from core.config import Settings

TEST_SECRET = "gatehouse-test-secret-0123456789abcdef"
TEST_PASSWORD = "correct-horse-battery"


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "database_url": "sqlite:///:memory:",
        "rate_limit_enabled": False,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def tokens(settings: Settings, clock: FakeClock) -> TokenService:
    return TokenService(settings, clock=clock)


@pytest.fixture
def service(store: CredentialStore, hasher: PasswordHasher, tokens: TokenService) -> AuthService:
    return AuthService(store, hasher, tokens)


# ---------------------------------------------------------------------------
# Module-scoped API client -- one app and one DB per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, Settings], None, None]:
    """Yield (client, settings) for HTTP integration tests.

    The TestClient runs the real create_app() with its real lifespan, so the
    store, service and guard are exactly what production wires up. The DB
    name is derived from the test module so modules never share state.
    """
    db_name = request.module.__name__.replace(".", "_")
    app_settings = make_settings(database_url=f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    app = create_app(app_settings)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, app_settings
