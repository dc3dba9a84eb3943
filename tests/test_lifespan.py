"""
tests/test_lifespan.py -- Real application startup and the session reaper.

Covers:
  - the production lifespan builds the engine and AuthService from Settings,
    serves requests, and starts the purge task only when an interval is set
  - _purge_loop deletes expired sessions and keeps running after a failed pass

These tests use a temp-file SQLite database: the purge runs in a worker
thread, and a plain :memory: database is private to one connection.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

import api.main as api_main
from api.main import _purge_loop, app
from auth.service import AuthService, build_auth_service
from auth.store import create_auth_engine
from tests.factories import make_settings, unique_email


@pytest.fixture
def real_lifespan(monkeypatch, tmp_path):
    """Point the real lifespan at a throwaway database and return a settings setter."""

    def configure(**overrides):
        settings = make_settings(database_url=f"sqlite:///{tmp_path / 'auth.db'}", **overrides)
        monkeypatch.setattr(api_main, "_settings", settings)
        return settings

    monkeypatch.setattr(app.router, "lifespan_context", api_main.lifespan)
    return configure


@pytest.fixture
def file_service(tmp_path):
    engine = create_auth_engine(f"sqlite:///{tmp_path / 'purge.db'}")
    yield build_auth_service(make_settings(), engine)
    engine.dispose()


def _run_purge_loop(fake_app, interval: float = 0.01, duration: float = 0.3) -> None:
    async def run():
        task = asyncio.create_task(_purge_loop(fake_app, interval))
        await asyncio.sleep(duration)
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    asyncio.run(run())


class TestLifespan:
    def test_startup_wires_service_and_serves(self, real_lifespan):
        real_lifespan()
        with TestClient(app) as client:
            assert isinstance(app.state.auth_service, AuthService)
            assert app.state.purge_task is not None
            assert client.get("/api/v1/health").status_code == 200
            resp = client.post("/api/v1/auth/register", json={"email": unique_email("boot"), "password": "pw123"})
            assert resp.status_code == 201

    def test_zero_interval_disables_purge_task(self, real_lifespan):
        real_lifespan(session_purge_interval_seconds=0)
        with TestClient(app) as client:
            assert app.state.purge_task is None
            assert client.get("/api/v1/health").status_code == 200


class TestPurgeLoop:
    def test_expired_sessions_are_removed(self, file_service):
        user = file_service.users.create_user("reaper@mail.com", "h")
        now = datetime.now(timezone.utc)
        file_service.sessions.create(user.id, "dead", now - timedelta(minutes=1))
        file_service.sessions.create(user.id, "live", now + timedelta(days=1))

        _run_purge_loop(SimpleNamespace(state=SimpleNamespace(auth_service=file_service)))

        assert file_service.sessions.get("dead") is None
        assert file_service.sessions.get("live") is not None

    def test_failed_pass_is_logged_and_loop_continues(self, file_service, monkeypatch, caplog):
        calls = []

        def flaky_purge():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("DELETE", {}, Exception("database is locked"))
            return 0

        monkeypatch.setattr(file_service.sessions, "purge_expired", flaky_purge)
        with caplog.at_level("ERROR", logger="gtdauth.api"):
            _run_purge_loop(SimpleNamespace(state=SimpleNamespace(auth_service=file_service)))

        assert len(calls) >= 2
        assert any("Session purge failed" in r.getMessage() for r in caplog.records)
