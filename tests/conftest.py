"""
tests/conftest.py -- Shared test fixtures for gatekeeper unit and integration tests.

This module provides:
  - FakeClock: injectable clock for time-window tests (lockout, expiry)
  - store / cache: isolated in-memory AuthStore and SQLiteTTLCache
  - make_identity(): inserts an identity with a bcrypt-hashed password
  - service: AuthService wired to the fixtures above and a mock mailer
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the real app with an isolated store

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Unit
tests run in one thread and use "sqlite://" (a single pinned connection).

DEBUG, APP_ENV and RATE_LIMIT_ENABLED must be set before any gatekeeper
import: get_settings() is cached on first call and api.limiter reads it at
import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import MagicMock

# CRITICAL: set before any gatekeeper import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Identity
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import AuthStore
from cache.store import SQLiteTTLCache
from core.config import get_settings
from core.context import RequestContext
from core.mailer import EmailResult

TEST_PASSWORD = "Correct#Horse9"
CHROME_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite://")
    yield s
    s.close()


@pytest.fixture()
def cache() -> Generator[SQLiteTTLCache, None, None]:
    c = SQLiteTTLCache(":memory:")
    yield c
    c.close()


def make_identity(
    store: AuthStore,
    email: str = "a@x.com",
    password: str = TEST_PASSWORD,
    name: str = "Alice",
    user_type: str = "user",
) -> Identity:
    """Insert an identity with a hashed password and return it with its id set."""
    identity = Identity(email=email, name=name, user_type=user_type, hashed_password=hash_password(password))
    identity.id = store.create_identity(identity, actor="test")
    return identity


@pytest.fixture()
def identity(store: AuthStore) -> Identity:
    return make_identity(store)


@pytest.fixture()
def mailer() -> MagicMock:
    m = MagicMock()
    m.send_password_reset.return_value = EmailResult(success=True, message_id="msg-1")
    return m


@pytest.fixture()
def service(store: AuthStore, cache: SQLiteTTLCache, mailer: MagicMock, clock: FakeClock) -> AuthService:
    return AuthService(store, cache, get_settings(), mailer=mailer, clock=clock)


@pytest.fixture()
def ctx() -> RequestContext:
    return RequestContext(ip_address="10.0.0.7", user_agent=CHROME_UA)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(auth_store: AuthStore, cache: SQLiteTTLCache, mailer: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured databases.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = auth_store
        app.state.cache = cache
        app.state.auth_service = AuthService(auth_store, cache, get_settings(), mailer=mailer)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthStore, MagicMock], None, None]:
    """Yield (client, store, mailer) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers, middleware and exception handlers but
    use an isolated in-memory store. Each module gets its own database name.
    """
    db_name = f"test_auth_{os.getpid()}_{id(object())}"
    auth_store = AuthStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    cache = SQLiteTTLCache(":memory:")
    mailer = MagicMock()
    mailer.send_password_reset.return_value = EmailResult(success=True)

    app.router.lifespan_context = _patch_lifespan(auth_store, cache, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, auth_store, mailer

    cache.close()
    auth_store.close()
