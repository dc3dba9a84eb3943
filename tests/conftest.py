"""
tests/conftest.py -- Shared test fixtures.

This module provides:
  - settings / engine / service: an AuthService on a private in-memory DB,
    for unit tests that call the auth core directly
  - _patch_lifespan(): wires a test AuthService into app.state, bypassing
    the real startup
  - api_client: TestClient for HTTP integration tests

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any app import:
  DEBUG=true               -- get_settings() auto-generates signing keys
  BCRYPT_ROUNDS=4          -- bcrypt's minimum cost; keeps the suite fast
  RATE_LIMIT_ENABLED=false -- the 5-per-15-minutes auth limit would trip
                              after a handful of tests
  ALLOWED_HOSTS            -- adds "testserver", the Host TestClient sends
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.service import AuthService, build_auth_service
from auth.store import create_auth_engine
from core.config import Settings
from tests.factories import make_settings

# ---------------------------------------------------------------------------
# Unit-level fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_auth_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def service(settings: Settings, engine: Engine) -> AuthService:
    return build_auth_service(settings, engine)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel, as in production.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by an isolated shared-memory database.

    One client per test module for speed. Tests register their own users
    with unique_email() so they never collide.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex[:8]}?mode=memory&cache=shared&uri=true"
    eng = create_auth_engine(db_url)
    service = build_auth_service(make_settings(), eng)

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    eng.dispose()
