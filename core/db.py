"""
core/db.py -- Shared SQLAlchemy Core plumbing for the Oynas stores.

Every store (auth/store.py, catalog/store.py) builds its engine here and runs
its statements inside persistence_guard(), so all of them share:

  Engine setup:  SQLite gets WAL mode, enforced foreign keys and a lock wait
                 timeout; PostgreSQL gets a server-side statement_timeout.
                 Both come from Settings.db_timeout_seconds.

  Error translation:  driver failures leave a store as PersistenceError
                 (PersistenceTimeout for timeouts and cancellations). Unique and
                 foreign key violations are recognised by their structured
                 code (SQLSTATE 23505 / 23503, SQLITE_CONSTRAINT_UNIQUE /
                 SQLITE_CONSTRAINT_FOREIGNKEY), never by matching the
                 driver's message text.

  Optimistic concurrency:  conditional_update() performs the version-matched
                 write and reports an explicit outcome instead of leaving the
                 caller to interpret an empty result.

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import Table, create_engine, event, make_url
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from core.errors import PersistenceError, PersistenceTimeout

_PG_UNIQUE_VIOLATION = "23505"
_PG_FOREIGN_KEY_VIOLATION = "23503"
_PG_QUERY_CANCELED = "57014"
_SQLITE_UNIQUE_VIOLATION = "SQLITE_CONSTRAINT_UNIQUE"
_SQLITE_FOREIGN_KEY_VIOLATION = "SQLITE_CONSTRAINT_FOREIGNKEY"
_SQLITE_BUSY = {"SQLITE_BUSY", "SQLITE_LOCKED", "SQLITE_INTERRUPT"}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite;
    token and permission rows rely on ON DELETE CASCADE.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def is_memory_url(db_url: str) -> bool:
    """True for SQLite URLs that name an in-memory database (plain or shared-cache)."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return False
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def create_store_engine(db_url: str, timeout_seconds: float) -> Engine:
    """Build an Engine whose every statement is bounded by timeout_seconds.

    In-memory SQLite databases live only as long as a connection to them, so
    they get a StaticPool: one connection held for the life of the engine.
    """
    connect_args: dict = {}
    engine_args: dict = {}
    if db_url.startswith("sqlite"):
        # SQLite requires check_same_thread=False because FastAPI runs sync
        # handlers in a thread pool that shares pooled connections.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
        if is_memory_url(db_url):
            engine_args["poolclass"] = StaticPool
    elif db_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout_seconds * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_unique_violation(exc: IntegrityError) -> bool:
    """Return True if exc is a unique constraint violation.

    PostgreSQL drivers expose the SQLSTATE; Python's sqlite3 exposes the
    extended result code name (Python 3.11+).
    """
    code = _sqlstate(exc)
    if code is not None:
        return code == _PG_UNIQUE_VIOLATION
    return getattr(exc.orig, "sqlite_errorname", None) == _SQLITE_UNIQUE_VIOLATION


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    code = _sqlstate(exc)
    if code is not None:
        return code == _PG_FOREIGN_KEY_VIOLATION
    return getattr(exc.orig, "sqlite_errorname", None) == _SQLITE_FOREIGN_KEY_VIOLATION


def _is_timeout(exc: OperationalError) -> bool:
    code = _sqlstate(exc)
    if code is not None:
        return code == _PG_QUERY_CANCELED
    return getattr(exc.orig, "sqlite_errorname", None) in _SQLITE_BUSY


@contextmanager
def persistence_guard(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures raised inside the block into PersistenceError.

    Domain errors raised by the store itself (DuplicateEmail, EditConflict,
    RecordNotFound) are not SQLAlchemy errors and pass through untouched.
    The original driver exception stays attached as __cause__ for logging.
    """
    try:
        yield
    except OperationalError as exc:
        if _is_timeout(exc):
            raise PersistenceTimeout(f"{operation} timed out") from exc
        raise PersistenceError(f"{operation} failed") from exc
    except SQLAlchemyError as exc:
        raise PersistenceError(f"{operation} failed") from exc


# ---------------------------------------------------------------------------
# Optimistic concurrency
# ---------------------------------------------------------------------------


class WriteOutcome(Enum):
    APPLIED = "applied"
    CONFLICT_OR_NOT_FOUND = "conflict_or_not_found"


@dataclass(frozen=True)
class WriteResult:
    outcome: WriteOutcome
    version: int | None = None

    @property
    def applied(self) -> bool:
        return self.outcome is WriteOutcome.APPLIED


def conditional_update(
    conn: Connection,
    table: Table,
    record_id: int,
    expected_version: int,
    values: dict,
) -> WriteResult:
    """Write values only if the row still carries expected_version.

    The version increment happens inside the same UPDATE statement, so the
    compare-and-swap is atomic in the database and needs no in-process lock.
    Zero matched rows means either a concurrent writer bumped the version or
    the row is gone; the two are indistinguishable here.
    """
    stmt = (
        table.update()
        .where((table.c.id == record_id) & (table.c.version == expected_version))
        .values(**values, version=table.c.version + 1)
        .returning(table.c.version)
    )
    new_version = conn.execute(stmt).scalar_one_or_none()
    if new_version is None:
        return WriteResult(WriteOutcome.CONFLICT_OR_NOT_FOUND)
    return WriteResult(WriteOutcome.APPLIED, new_version)
