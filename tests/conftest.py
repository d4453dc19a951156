"""
tests/conftest.py -- Shared test fixtures for AuthGate.

This module provides:
  - FakeClock / RecordingNotifier: deterministic time and a synchronous notifier
  - store / codec / service: unit-level fixtures over an in-memory SQLite store
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG must be set before any api/core import so get_settings() auto-generates
SECRET_KEY instead of raising ValueError. The sign-in rate limit is raised so
route tests can sign in as often as they need.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SIGN_IN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_auth_service
from auth.service import AuthService
from auth.sessions import SessionIssuer
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
ACCESS_SECONDS = 3600
REFRESH_SECONDS = 7 * 24 * 3600


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock for TokenCodec; advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    """Synchronous notifier that records what would have been sent."""

    def __init__(self) -> None:
        self.emails: list[tuple[str, str | None]] = []
        self.sms: list[str | None] = []

    def send_reset_password(self, to: str, redirect_to: str | None) -> None:
        self.emails.append((to, redirect_to))

    def send_sms(self, phone_number: str | None) -> None:
        self.sms.append(phone_number)

    def shutdown(self, wait: bool = True) -> None:
        pass


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(secret_key=TEST_SECRET, default_expire_seconds=ACCESS_SECONDS, clock=clock)


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store: UserStore, codec: TokenCodec, notifier: RecordingNotifier) -> AuthService:
    return AuthService(store=store, issuer=SessionIssuer(codec, REFRESH_SECONDS), notifier=notifier)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, notifier: RecordingNotifier, oauth: MagicMock):
    """Return a lifespan that wires test doubles into app.state instead of real resources."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.mail = notifier
        app.state.auth_service = build_auth_service(get_settings(), user_store, notifier)
        app.state.oauth = oauth
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore, RecordingNotifier], None, None]:
    """Yield (client, store, notifier) for API integration tests.

    app.state.oauth is a MagicMock registry; tests set
    oauth.create_client.return_value to a client double.
    """
    user_store = UserStore(db_url="sqlite:///file:test_auth_api?mode=memory&cache=shared&uri=true")
    notifier = RecordingNotifier()
    oauth = MagicMock()

    app.router.lifespan_context = _patch_lifespan(user_store, notifier, oauth)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, notifier

    user_store.close()
