"""
tests/conftest.py -- Shared test fixtures for authgate tests.

This module provides:
  - store / provider: an isolated UserStore and StoreSessionProvider per test
  - client: TestClient on the real app with a patched lifespan
  - app_with_provider: TestClient on the real app with any injected provider

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync work in a thread pool. Plain :memory: DBs are
per-connection and would present a blank schema to each worker thread.

DEBUG and ALLOWED_HOSTS must be set before any app import: get_settings() is
cached on first use, and TestClient sends Host: testserver.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.provider import StoreSessionProvider
from auth.store import UserStore
from core.config import get_settings

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_db_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def patch_lifespan(provider, user_store: UserStore):
    """Return a lifespan that wires test doubles into app.state.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_provider = provider
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """The limiter's memory counters are process-global; start every test at zero."""
    limiter.reset()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(_memory_db_url())
    yield s
    s.close()


@pytest.fixture
def provider(store: UserStore, settings) -> StoreSessionProvider:
    return StoreSessionProvider(store, settings)


@pytest.fixture
def client(provider: StoreSessionProvider, store: UserStore) -> Generator[TestClient, None, None]:
    """TestClient on the real app backed by the store-backed provider.

    follow_redirects=False so tests can assert on redirect Location headers.
    """
    app.router.lifespan_context = patch_lifespan(provider, store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def app_with_provider(store: UserStore):
    """Factory: TestClient on the real app with an arbitrary injected provider."""
    clients: list[TestClient] = []

    def _make(fake, **client_kwargs) -> TestClient:
        app.router.lifespan_context = patch_lifespan(fake, store)
        client_kwargs.setdefault("follow_redirects", False)
        c = TestClient(app, **client_kwargs)
        c.__enter__()
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.__exit__(None, None, None)
