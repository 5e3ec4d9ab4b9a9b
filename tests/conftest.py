"""
tests/conftest.py -- Shared test fixtures for Atomic Systems integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users + habits
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the real app with isolated stores
  - register / user / auth_headers: fixtures that create accounts through the API
  - user_store / habit_store / auth_service: direct store fixtures for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any core/auth import: DEBUG lets get_settings()
auto-generate SECRET_KEY, RATE_LIMIT_ENABLED=false keeps the login limit from
tripping across a module's worth of registrations, and BCRYPT_ROUNDS=4 keeps
hashing fast.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import -- get_settings() is cached on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.store import UserStore
from habits.store import HabitStore

PASSWORD = "Passw0rd1"

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, HabitStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules and
                   function-scoped fixtures don't share state.
    """
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    habits_url = f"sqlite:///file:test_habits_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), HabitStore(db_url=habits_url)


def _patch_lifespan(user_store: UserStore, habit_store: HabitStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.auth_service = AuthService(user_store)
        app.state.habit_store = habit_store
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def register_user(client: TestClient, name: str = "Alice", email: str | None = None) -> dict:
    """Register a fresh account and return the response's data block ({user, tokens})."""
    email = email or f"user-{uuid.uuid4().hex[:12]}@example.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": PASSWORD, "name": name},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with isolated in-memory stores."""
    user_store, habit_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    app.router.lifespan_context = _patch_lifespan(user_store, habit_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    habit_store.close()
    user_store.close()


@pytest.fixture
def register(api_client: TestClient):
    """register(name=..., email=...) -> {"user": {...}, "tokens": {...}} for a new account."""

    def _register(name: str = "Alice", email: str | None = None) -> dict:
        return register_user(api_client, name=name, email=email)

    return _register


@pytest.fixture
def user(api_client: TestClient) -> dict:
    """A freshly registered user: {"user": {...}, "tokens": {...}}."""
    return register_user(api_client)


@pytest.fixture
def auth_headers(user: dict) -> dict[str, str]:
    return bearer(user["tokens"]["accessToken"])


# ---------------------------------------------------------------------------
# Function-scoped store fixtures for unit tests
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store, habits = _make_test_stores(f"unit_{next(_db_counter)}")
    habits.close()
    yield store
    store.close()


@pytest.fixture
def habit_store() -> Generator[HabitStore, None, None]:
    users, store = _make_test_stores(f"unit_{next(_db_counter)}")
    users.close()
    yield store
    store.close()


@pytest.fixture
def auth_service(user_store: UserStore) -> AuthService:
    return AuthService(user_store)
