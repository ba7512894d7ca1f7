"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as catalog/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

Tables:
  users              -- accounts; email UNIQUE, version for optimistic concurrency
  tokens             -- SHA-256 hex of each bearer token, owner, scope, expiry
  permissions        -- permission codes ("toys:read", ...)
  users_permissions  -- grants

Failure contract:
  Every method runs inside core.db.persistence_guard, so driver failures
  leave as PersistenceError / PersistenceTimeout. Lookups that find nothing
  raise RecordNotFound. A unique violation on users (the only non-key unique
  column is email) raises DuplicateEmail. A version-matched update that hits
  no row raises EditConflict. Nothing is retried.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Token plaintext never reaches this module -- only its hash.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import SCOPE_ACTIVATION, Token, User
from auth.passwords import Password
from auth.tokens import generate_token
from core.config import get_settings
from core.db import conditional_update, create_store_engine, is_unique_violation, persistence_guard
from core.errors import DuplicateEmail, EditConflict, PersistenceError, RecordNotFound

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("name", String(500), nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", LargeBinary, nullable=False),
    Column("activated", Boolean, nullable=False, server_default="0"),
    Column("version", Integer, nullable=False, server_default="1"),
)

_tokens = Table(
    "tokens",
    metadata,
    Column("hash", String(64), primary_key=True),  # SHA-256 hex of the plaintext
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expiry", DateTime(timezone=True), nullable=False),
    Column("scope", String(20), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(50), nullable=False, unique=True),
)

_users_permissions = Table(
    "users_permissions",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Token and permission records.

    Usage:
        store = UserStore()
        user = User(name="Aru", email="aru@oynas.kz")
        user.password.set("pa55word-pa55word")
        token = store.register_user(user, ("toys:read",), timedelta(days=3))
        # user.id, created_at, version filled in; token.plaintext goes to the user
        store.close()

    clock is injectable so tests can move "now" without sleeping.
    """

    def __init__(self, db_url: str | None = None, clock: Callable[[], datetime] = _utcnow) -> None:
        settings = get_settings()
        self.engine: Engine = create_store_engine(db_url or settings.database_url, settings.db_timeout_seconds)
        self.clock = clock
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def insert_user(self, user: User) -> None:
        """Insert a new user, filling in id, created_at and version (always 1).

        Raises DuplicateEmail if the email is already registered.
        """
        with persistence_guard("insert user"), self.engine.connect() as conn:
            self._insert_user_row(conn, user)
            conn.commit()

    def register_user(self, user: User, codes: tuple[str, ...], activation_ttl: timedelta) -> Token:
        """Insert user, grant codes and issue an activation token in one transaction.

        Either all three rows land or none do: a failure after the user row
        was written rolls it back, so the email stays free to register again.
        Returns the activation token with its plaintext populated.
        """
        with persistence_guard("register user"), self.engine.connect() as conn:
            self._insert_user_row(conn, user)
            self._grant_rows(conn, user.id, codes)
            token = generate_token(user.id, activation_ttl, SCOPE_ACTIVATION, self.clock())
            self._insert_token_row(conn, token)
            conn.commit()
        return token

    def _insert_user_row(self, conn: Connection, user: User) -> None:
        created_at = self.clock().isoformat()
        try:
            result = conn.execute(
                _users.insert().values(
                    created_at=created_at,
                    name=user.name,
                    role=user.role,
                    email=user.email,
                    password_hash=user.password.hash,
                    activated=user.activated,
                    version=1,
                )
            )
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise DuplicateEmail() from exc
            raise
        user.id = result.inserted_primary_key[0]
        user.version = 1
        user.created_at = created_at

    def get_user(self, user_id: int) -> User:
        """Fetch a user by primary key. Non-positive ids fail without a query."""
        if user_id < 1:
            raise RecordNotFound()
        with persistence_guard("get user"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        if row is None:
            raise RecordNotFound()
        return _row_to_user(row)

    def get_user_by_email(self, email: str) -> User:
        """Look up a user by exact email. Raises RecordNotFound if absent."""
        with persistence_guard("get user by email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        if row is None:
            raise RecordNotFound()
        return _row_to_user(row)

    def update_user(self, user: User) -> None:
        """Write name, email, password hash and activation state, version-matched.

        The row must still carry user.version; on success user.version is
        replaced by the incremented value. user is known to exist (it was
        read before), so an unmatched write is reported as EditConflict.
        """
        with persistence_guard("update user"), self.engine.connect() as conn:
            try:
                result = conditional_update(
                    conn,
                    _users,
                    user.id,
                    user.version,
                    {
                        "name": user.name,
                        "email": user.email,
                        "password_hash": user.password.hash,
                        "activated": user.activated,
                    },
                )
                conn.commit()
            except IntegrityError as exc:
                if is_unique_violation(exc):
                    raise DuplicateEmail() from exc
                raise
        if not result.applied:
            raise EditConflict()
        user.version = result.version

    def delete_user(self, user_id: int) -> None:
        """Delete a user; their tokens and grants go with them (ON DELETE CASCADE)."""
        if user_id < 1:
            raise RecordNotFound()
        with persistence_guard("delete user"), self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        if result.rowcount == 0:
            raise RecordNotFound()

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def insert_token(self, token: Token) -> None:
        with persistence_guard("insert token"), self.engine.connect() as conn:
            self._insert_token_row(conn, token)
            conn.commit()

    def _insert_token_row(self, conn: Connection, token: Token) -> None:
        conn.execute(
            _tokens.insert().values(
                hash=token.hash,
                user_id=token.user_id,
                expiry=token.expiry,
                scope=token.scope,
            )
        )

    def get_for_token(self, scope: str, token_hash: str) -> User:
        """Return the owner of a live token with this hash and scope.

        Unknown hash, other scope and expired token all raise the same
        RecordNotFound -- the caller cannot tell which condition failed.
        """
        query = (
            select(_users)
            .select_from(_users.join(_tokens, _users.c.id == _tokens.c.user_id))
            .where(
                (_tokens.c.hash == token_hash)
                & (_tokens.c.scope == scope)
                & (_tokens.c.expiry > self.clock())
            )
        )
        with persistence_guard("get user for token"), self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            raise RecordNotFound()
        return _row_to_user(row)

    def delete_tokens_for_user(self, scope: str, user_id: int) -> int:
        """Delete every token of user_id in scope. Returns the number removed."""
        with persistence_guard("delete tokens"), self.engine.connect() as conn:
            result = conn.execute(
                _tokens.delete().where((_tokens.c.scope == scope) & (_tokens.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def get_permissions(self, user_id: int) -> set[str]:
        """Return the permission codes granted to user_id (empty set if none)."""
        query = (
            select(_permissions.c.code)
            .join(_users_permissions, _permissions.c.id == _users_permissions.c.permission_id)
            .where(_users_permissions.c.user_id == user_id)
        )
        with persistence_guard("get permissions"), self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return {r.code for r in rows}

    def grant_permissions(self, user_id: int, *codes: str) -> None:
        """Grant codes to user_id, creating unknown codes on the fly.

        Idempotent: granting a code the user already holds is a no-op.
        """
        if not codes:
            return
        with persistence_guard("grant permissions"), self.engine.connect() as conn:
            self._grant_rows(conn, user_id, codes)
            conn.commit()

    def _grant_rows(self, conn: Connection, user_id: int, codes: tuple[str, ...]) -> None:
        if not codes:
            return
        for code in codes:
            conn.execute(_insert_ignore(conn, _permissions).values(code=code))
        permission_ids = (
            conn.execute(select(_permissions.c.id).where(_permissions.c.code.in_(codes))).scalars().all()
        )
        for permission_id in permission_ids:
            conn.execute(
                _insert_ignore(conn, _users_permissions).values(user_id=user_id, permission_id=permission_id)
            )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with persistence_guard("ping"), self.engine.connect() as conn:
                conn.execute(select(1))
        except PersistenceError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


def _insert_ignore(conn, table: Table):
    """INSERT that skips rows colliding with an existing key."""
    if conn.dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert(table).on_conflict_do_nothing()
    return sqlite_insert(table).on_conflict_do_nothing()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        created_at=row.created_at,
        name=row.name,
        role=row.role,
        email=row.email,
        password=Password(hash=row.password_hash),
        activated=bool(row.activated),
        version=row.version,
    )


