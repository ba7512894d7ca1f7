"""
tests/conftest.py -- Shared test fixtures for Oynas integration tests.

This module provides:
  - make_test_stores(): creates isolated in-memory DBs for users + catalog
  - create_user(): inserts a user with a password and permission grants
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus bearer tokens for users of different standing

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any project import: get_settings() is cached
on first call and the limiter reads it at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")  # allows the low bcrypt cost below
os.environ.setdefault("BCRYPT_COST", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import (
    PERMISSION_TOYS_COMMENT,
    PERMISSION_TOYS_READ,
    PERMISSION_TOYS_WRITE,
    SCOPE_AUTHENTICATION,
    Token,
    User,
)
from auth.store import UserStore
from auth.tokens import issue_token
from catalog.store import CatalogStore

PASSWORD = "pa55word-pa55word"
ALL_PERMISSIONS = (PERMISSION_TOYS_READ, PERMISSION_TOYS_WRITE, PERMISSION_TOYS_COMMENT)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_stores(db_suffix: str) -> tuple[UserStore, CatalogStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    catalog_url = f"sqlite:///file:test_catalog_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), CatalogStore(db_url=catalog_url)


def create_user(
    store: UserStore,
    email: str,
    name: str = "Test User",
    activated: bool = True,
    permissions: tuple[str, ...] = (),
) -> User:
    """Insert a user whose password is PASSWORD and grant it permissions."""
    user = User(name=name, email=email, activated=activated)
    user.password.set(PASSWORD)
    user.password.clear()
    store.insert_user(user)
    if permissions:
        store.grant_permissions(user.id, *permissions)
    return user


def login_token(store: UserStore, user: User) -> str:
    """Issue a one-hour authentication token and return its plaintext."""
    return issue_token(store, user.id, timedelta(hours=1), SCOPE_AUTHENTICATION).plaintext


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@dataclass
class Outbox:
    """Activation sender that keeps every (user, token) it is handed."""

    sent: list[tuple[User, Token]] = field(default_factory=list)

    def __call__(self, user: User, token: Token) -> None:
        self.sent.append((user, token))

    def last_token_for(self, email: str) -> str:
        for user, token in reversed(self.sent):
            if user.email == email:
                return token.plaintext
        raise LookupError(email)


def _patch_lifespan(user_store: UserStore, catalog: CatalogStore, outbox: Outbox):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.catalog = catalog
        app.state.send_activation = outbox
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiSession:
    client: TestClient
    user_store: UserStore
    catalog: CatalogStore
    outbox: Outbox
    tokens: dict[str, str]


def _start_session(db_suffix: str) -> tuple[ApiSession, UserStore, CatalogStore]:
    user_store, catalog = make_test_stores(db_suffix)

    editor = create_user(user_store, "editor@oynas.kz", name="Editor", permissions=ALL_PERMISSIONS)
    reader = create_user(
        user_store,
        "reader@oynas.kz",
        name="Reader",
        permissions=(PERMISSION_TOYS_READ, PERMISSION_TOYS_COMMENT),
    )
    inactive = create_user(
        user_store, "inactive@oynas.kz", name="Inactive", activated=False, permissions=ALL_PERMISSIONS
    )
    tokens = {
        "editor": login_token(user_store, editor),
        "reader": login_token(user_store, reader),
        "inactive": login_token(user_store, inactive),
    }
    outbox = Outbox()
    app.router.lifespan_context = _patch_lifespan(user_store, catalog, outbox)
    client = TestClient(app, raise_server_exceptions=True)
    return ApiSession(client, user_store, catalog, outbox, tokens), user_store, catalog


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiSession, None, None]:
    """Yield an ApiSession for API integration tests.

    Three users exist before the client starts:
      editor   -- activated, toys:read + toys:write + toys:comment
      reader   -- activated, toys:read + toys:comment
      inactive -- not activated, every permission
    session.tokens maps each name to a live authentication token.
    """
    session, user_store, catalog = _start_session("api")
    with session.client:
        yield session
    user_store.close()
    catalog.close()


@pytest.fixture(scope="module")
def health_client() -> Generator[ApiSession, None, None]:
    """Same as api_client, against separate databases."""
    session, user_store, catalog = _start_session("health")
    with session.client:
        yield session
    user_store.close()
    catalog.close()
