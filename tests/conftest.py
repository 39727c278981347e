"""
tests/conftest.py -- Shared test fixtures for VinylRewind.

This module provides:
  - engine / user_store / catalog / hasher: one temp-file SQLite database per
    test, schema created, for unit tests of the stores and auth components
  - make_user: factory that inserts a user with a known password
  - _patch_lifespan(): wires a test engine into app.state, bypassing real startup
  - client: TestClient over the real app, wired to an isolated database

Design: temp-file SQLite (not :memory:) because TestClient runs sync route
handlers in a thread pool and the registration race test writes from several
threads at once; every pooled connection must see the same database.

Environment variables must be set before any app module is imported:
get_settings() is cached on first use and api/limiter.py and api/main.py read
it at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app, wire_components
from auth.models import User
from auth.passwords import PasswordHasher
from auth.store import UserStore
from catalog.store import CatalogStore
from core.db import create_db_engine, create_schema

TEST_PASSWORD = "Password123!"


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    eng = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def catalog(engine: Engine) -> CatalogStore:
    return CatalogStore(engine)


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def make_user(user_store: UserStore, hasher: PasswordHasher) -> Callable[..., int]:
    """Return a factory: make_user("alice") -> user id, password TEST_PASSWORD."""

    def _make(username: str, email: str | None = None, password: str = TEST_PASSWORD) -> int:
        return user_store.insert_user(
            User(
                username=username,
                email=email or f"{username}@example.com",
                password_hash=hasher.hash(password),
            )
        )

    return _make


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine into app.state with the same component graph the
    real lifespan builds. The purge_task is a long-sleeping coroutine so
    shutdown can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_components(app, engine)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def client(engine: Engine) -> Generator[TestClient, None, None]:
    """TestClient with follow_redirects=False so tests can assert on 303s."""
    app.router.lifespan_context = _patch_lifespan(engine)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=False) as c:
        yield c


def register(client: TestClient, username: str, email: str | None = None, password: str = TEST_PASSWORD):
    return client.post(
        "/api/v1/auth/register",
        json={
            "username": username,
            "email": email or f"{username}@example.com",
            "password": password,
            "confirm_password": password,
        },
    )


def login(client: TestClient, identifier: str, password: str = TEST_PASSWORD):
    return client.post("/api/v1/auth/login", json={"identifier": identifier, "password": password})
