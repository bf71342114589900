"""
tests/conftest.py -- Shared test fixtures for Orbit Auth.

This module provides:
  - store: a seeded in-memory CredentialStore for unit tests (function scope)
  - _make_test_store(): a seeded named shared-memory store for integration tests
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: TestClient plus an admin access token obtained through /login
  - login: helper that logs a user in through the API and returns the JSON body
  - make_user: helper that creates a user directly in a store

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API tests because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core import so the cached
Settings pick them up:
  DEBUG=true              -- auto-generate SECRET_KEY instead of raising
  BCRYPT_ROUNDS=4         -- bcrypt's floor; keeps the suite fast
  LOGIN_RATE_LIMIT        -- high enough that tests never trip it
  BOOTSTRAP_ADMIN_*       -- known credentials for the seeded admin
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core import so get_settings() sees it.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SEED_ON_STARTUP", "false")
os.environ.setdefault("BOOTSTRAP_ADMIN_EMAIL", "admin@shoporbit.com")
os.environ.setdefault("BOOTSTRAP_ADMIN_PASSWORD", "AdminPass123!")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.seed import seed_auth_data
from auth.store import CredentialStore
from auth.tokens import hash_password
from core.config import get_settings

ADMIN_EMAIL = "admin@shoporbit.com"
ADMIN_PASSWORD = "AdminPass123!"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> CredentialStore:
    """Create an isolated, seeded named shared-memory store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    store = CredentialStore(url)
    seed_auth_data(store, get_settings())
    return store


def _patch_lifespan(store: CredentialStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store into app.state so TestClient routes see
    an isolated test DB rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        yield

    return test_lifespan


def _create_user(
    store: CredentialStore,
    email: str,
    password: str = "Password123",
    role_key: str = "sales_agent",
    status: str = "active",
    full_name: str = "Test User",
) -> User:
    role = store.get_role_by_key(role_key)
    return store.create_user(
        User(
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            role_id=role.id,
            status=status,
        )
    )


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    """A fresh, seeded in-memory store (admin + sales_agent roles, bootstrap admin)."""
    s = CredentialStore("sqlite:///:memory:")
    seed_auth_data(s, get_settings())
    yield s
    s.close()


@pytest.fixture
def make_user() -> Callable[..., User]:
    """Return _create_user so tests can build users in any store."""
    return _create_user


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory store. The admin
    token comes from a real POST /auth/login. The store is reachable as
    client.app.state.store.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        resp = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert resp.status_code == 200, f"Admin login failed: {resp.status_code}: {resp.text}"
        body = resp.json()
        yield client, body["access_token"], body["user"]["id"]

    store.close()


@pytest.fixture(scope="module")
def login(api_client) -> Callable[[str, str], dict]:
    """Return a function that logs in through the API and returns the JSON body."""
    client, _token, _uid = api_client

    def _login(email: str, password: str) -> dict:
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        return resp.json()

    return _login
