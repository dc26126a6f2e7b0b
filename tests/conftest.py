"""Pytest configuration and fixtures for Sideout tests."""
import os
import tempfile
from pathlib import Path

# Set test env BEFORE any imports that use config
_db_dir = tempfile.mkdtemp(prefix="sideout-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_db_dir) / 'test.db'}"
os.environ["INITIAL_ADMIN_PASSWORD"] = "testpass123"
os.environ["INITIAL_ADMIN_USERNAME"] = "admin"
os.environ["EVENT_RELAY_URL"] = ""

from datetime import date, time, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from sideout.models.base import async_session_factory, drop_db, engine, init_db
from sideout.services.sessions import create_session
from web.api.auth_routes import limiter
from web.api.main import app


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
async def _init_db():
    """Fresh tables for every test (ASGI lifespan doesn't run with httpx)."""
    await drop_db()
    await init_db()
    limiter.reset()
    yield
    await engine.dispose()


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def future_date():
    return date.today() + timedelta(days=7)


@pytest.fixture
def make_session(db, future_date):
    """Factory: create a scheduled session a week out with the given rule string."""

    async def _make(rules="max_18", **kwargs):
        values = {
            "date": future_date,
            "start_time": time(18, 0),
            "end_time": time(20, 0),
            "capacity_constraints": rules,
        }
        values.update(kwargs)
        return await create_session(db, **values)

    return _make


@pytest.fixture
async def client():
    """Async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def auth_headers(client):
    """Login as admin and return Authorization headers for trainer endpoints."""
    r = await client.post(
        "/api/auth/login",
        json={"username": "admin", "password": "testpass123"},
    )
    assert r.status_code == 200, f"Login failed: {r.text}"
    token = r.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
