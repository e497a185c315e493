"""
tests/conftest.py -- Shared test fixtures for the LearnHub auth test suite.

This module provides:
  - make_store(): isolated in-memory UserStore per test / module
  - make_cache(): CacheGateway over a private fakeredis server
  - refresh_tokens_of(), expire_refresh_token(): direct refresh_tokens reads/writes
  - store, cache, service: function-scoped unit-test fixtures
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format shares one in-memory instance across all
connections in the same process.

Environment must be set before any core/auth/api import:
  DEBUG=true               -- get_settings() generates the signing secrets
  RATE_LIMIT_ENABLED=false -- the register/login limit would trip mid-suite
  ALLOWED_HOSTS=["*"]      -- TestClient sends Host: testserver
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from api.main import app
from auth.service import AuthService
from auth.store import UserStore
from cache.blacklist import TokenBlacklist
from cache.otp import OTPStore
from cache.store import CacheGateway
from core.config import get_settings

STRONG_PASSWORD = "Str0ng!pw"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_store(name: str | None = None) -> UserStore:
    """Create an isolated named shared-memory SQLite UserStore."""
    name = name or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true")


def make_cache() -> CacheGateway:
    """CacheGateway over a private fakeredis server (no state shared between calls)."""
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return CacheGateway(client)


def make_service(store: UserStore, cache: CacheGateway, **kwargs) -> AuthService:
    settings = get_settings()
    return AuthService(
        store=store,
        otp_store=OTPStore(cache, ttl=settings.otp_ttl_seconds),
        blacklist=TokenBlacklist(cache, ttl=settings.token_blacklist_ttl_seconds),
        settings=settings,
        **kwargs,
    )


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def refresh_tokens_of(store: UserStore, user_id: str) -> list[str]:
    """Token strings stored for user_id, oldest first."""
    with store.engine.connect() as conn:
        rows = conn.execute(
            text("SELECT token FROM refresh_tokens WHERE user_id = :uid ORDER BY id"),
            {"uid": user_id},
        ).fetchall()
    return [row[0] for row in rows]


def expire_refresh_token(store: UserStore, token: str, expires_at: str) -> None:
    with store.engine.begin() as conn:
        conn.execute(
            text("UPDATE refresh_tokens SET expires_at = :exp WHERE token = :token"),
            {"exp": expires_at, "token": token},
        )


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def cache() -> CacheGateway:
    return make_cache()


@pytest.fixture
def service(store: UserStore, cache: CacheGateway) -> AuthService:
    return make_service(store, cache)


# ---------------------------------------------------------------------------
# Integration fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService, cache: CacheGateway):
    """Return a lifespan that wires test handles into app.state.

    Replaces the real lifespan so no Redis server or on-disk DB is needed.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = service.store
        app.state.cache = cache
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for API integration tests.

    The TestClient runs the real FastAPI app -- middleware, validation,
    exception handlers -- over isolated in-memory stores. The service is
    handed back so tests can read pending OTPs from the cache.
    """
    store = make_store()
    cache = make_cache()
    service = make_service(store, cache)

    app.router.lifespan_context = _patch_lifespan(service, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    store.close()
