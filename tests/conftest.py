"""
tests/conftest.py -- Shared test fixtures for AuthGate.

This module provides:
  - FakeClock: a settable clock injected into every time-aware component
  - store / registry: isolated in-memory databases per test
  - make_engine / engine: an AuthEngine wired from test components
  - register_user: fixture returning a helper that registers a valid account
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture appends a uuid so tests never see each other's rows.

Environment must be set before any auth/core/api import:
  DEBUG=true           -- get_settings() generates SECRET_KEY instead of raising
  BCRYPT_ROUNDS=4      -- auth/passwords.py reads the cost at import time
  API_RATE_LIMIT       -- api/limiter.py reads it at import time; kept high so
                          the coarse slowapi limit never trips during the suite
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any project import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("API_RATE_LIMIT", "10000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:authgate_default?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.engine import AuthEngine
from auth.lockout import LockoutPolicy
from auth.models import AuthResult, Registration
from auth.ratelimit import RateLimiter
from auth.revocation import RevocationRegistry
from auth.store import UserStore
from auth.tokens import TokenCodec

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
TEST_PASSWORD = "Correct1horse"


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> Generator[UserStore, None, None]:
    user_store = UserStore(db_url=memory_url("users"), clock=clock)
    yield user_store
    user_store.close()


@pytest.fixture
def registry(clock: FakeClock) -> Generator[RevocationRegistry, None, None]:
    revocations = RevocationRegistry(db_url=memory_url("revocations"), clock=clock)
    yield revocations
    revocations.close()


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture
def codec(secret_key: str, clock: FakeClock) -> TokenCodec:
    return TokenCodec(secret_key, access_ttl=900, refresh_ttl=7 * 24 * 3600, clock=clock)


@pytest.fixture
def make_engine(store, registry, codec, clock):
    """Return a factory building an AuthEngine; keyword args override components.

    The default limiter has no rules (admits everything) so tests that are
    not about rate limiting can log in as often as they like.
    """

    def factory(**overrides) -> AuthEngine:
        params = dict(
            store=store,
            registry=registry,
            codec=codec,
            lockout=LockoutPolicy(threshold=5, duration=timedelta(days=1)),
            limiter=RateLimiter({}, clock=clock),
            clock=clock,
        )
        params.update(overrides)
        return AuthEngine(**params)

    return factory


@pytest.fixture
def engine(make_engine) -> AuthEngine:
    return make_engine()


@pytest.fixture
def register_user(engine: AuthEngine):
    """Return a helper that registers an account with a valid payload.

    Each username gets its own client key so the register rate limit never
    interferes when a test builds several accounts.
    """

    def register(
        username: str = "ada",
        email: str | None = None,
        password: str = TEST_PASSWORD,
        phone: str | None = None,
        client: str | None = None,
    ) -> AuthResult:
        return engine.register(
            Registration(username=username, email=email or f"{username}@example.com", password=password, phone=phone),
            client=client or f"client-{username}",
        )

    return register


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: AuthEngine):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine (and its store/registry) into app.state so
    TestClient routes see isolated test DBs rather than the configured one.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = engine.store
        app.state.registry = engine.registry
        app.state.engine = engine
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(engine: AuthEngine) -> Generator[tuple[TestClient, AuthEngine], None, None]:
    """Yield (client, engine) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers and exception handlers but use isolated
    in-memory stores and the FakeClock-driven engine.
    """
    app.router.lifespan_context = _patch_lifespan(engine)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, engine
