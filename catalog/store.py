"""
catalog/store.py -- SQLAlchemy-backed persistence layer for toys and comments.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in catalog/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Optimistic concurrency:
  toys.version starts at 1. update_toy() writes only if the row still holds
  the version the caller read (core.db.conditional_update) and reports
  EditConflict otherwise. There is no lock and no retry; the caller re-reads
  and tries again, or tells the client.

Security: all queries use bound parameters. ORDER BY columns come from a
fixed mapping keyed by the validated sort parameter, never from raw input.

Usage:
    store = CatalogStore()                               # Settings.database_url
    store = CatalogStore("postgresql://user:pw@host/db")
    store.insert_toy(toy)                                # toy.id, version filled in
    toy.value = 12000
    store.update_toy(toy)                                # EditConflict if stale
    toys, metadata = store.list_toys(title="lego", filters=filters)
    store.close()
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Integer, MetaData, String, Table, Text, cast, func, literal, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from catalog.models import Comment, Toy
from core.config import get_settings
from core.db import conditional_update, create_store_engine, is_foreign_key_violation, persistence_guard
from core.errors import EditConflict, PersistenceError, RecordNotFound
from core.filters import Filters, Metadata, calculate_metadata

# Sort parameters accepted by list_toys(); "-" prefix means descending.
TOY_SORT_SAFELIST: tuple[str, ...] = (
    "id",
    "title",
    "recAge",
    "value",
    "-id",
    "-title",
    "-recAge",
    "-value",
)

DEFAULT_VALUE_FROM = 0
DEFAULT_VALUE_TO = 100_000

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_toys = Table(
    "toys",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("title", String(500), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("details", Text),  # JSON array serialized as text
    Column("skills", Text),  # JSON array
    Column("categories", Text),  # JSON array
    Column("images", Text),  # JSON array
    Column("recommended_age", String(50), nullable=False),
    Column("manufacturer", String(255), nullable=False),
    Column("value", Integer, nullable=False),
    Column("is_available", Boolean, nullable=False, server_default="1"),
    Column("wait_list", Text),  # JSON array
    Column("version", Integer, nullable=False, server_default="1"),
)

_comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("toy_id", Integer, ForeignKey("toys.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("user_name", String(500), nullable=False),
    Column("text", Text, nullable=False),
    Column("rating", Integer, nullable=False),
)

_SORT_COLUMNS = {
    "id": _toys.c.id,
    "title": _toys.c.title,
    "recAge": _toys.c.recommended_age,
    "value": _toys.c.value,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _toy_columns(toy: Toy) -> dict:
    """Column values for every mutable toy field, lists serialized to JSON."""
    return {
        "title": toy.title,
        "description": toy.description,
        "details": json.dumps(toy.details),
        "skills": json.dumps(toy.skills),
        "categories": json.dumps(toy.categories),
        "images": json.dumps(toy.images),
        "recommended_age": toy.recommended_age,
        "manufacturer": toy.manufacturer,
        "value": toy.value,
        "is_available": toy.is_available,
        "wait_list": json.dumps(toy.wait_list),
    }


def _contains_all(dialect: str, column, values: list[str]) -> list:
    """WHERE clauses requiring the JSON array in column to hold every one of values.

    PostgreSQL compares the array as jsonb with @>. SQLite expands it with
    json_each and needs one EXISTS per wanted value.
    """
    wanted = list(dict.fromkeys(values))
    if not wanted:
        return []
    if dialect == "postgresql":
        return [cast(column, JSONB).contains(wanted)]
    clauses = []
    for value in wanted:
        items = func.json_each(column).table_valued("value")
        clauses.append(select(literal(1)).select_from(items).where(items.c.value == value).exists())
    return clauses


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    def __init__(self, db_url: str | None = None) -> None:
        settings = get_settings()
        self.engine: Engine = create_store_engine(db_url or settings.database_url, settings.db_timeout_seconds)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Toys
    # ------------------------------------------------------------------

    def insert_toy(self, toy: Toy) -> None:
        """Insert a new toy, filling in id, created_at and version (always 1)."""
        created_at = _now_iso()
        with persistence_guard("insert toy"), self.engine.connect() as conn:
            result = conn.execute(_toys.insert().values(created_at=created_at, version=1, **_toy_columns(toy)))
            conn.commit()
        toy.id = result.inserted_primary_key[0]
        toy.version = 1
        toy.created_at = created_at

    def get_toy(self, toy_id: int) -> Toy:
        """Fetch a single toy by ID. Non-positive ids fail without a query."""
        if toy_id < 1:
            raise RecordNotFound()
        with persistence_guard("get toy"), self.engine.connect() as conn:
            row = conn.execute(_toys.select().where(_toys.c.id == toy_id)).fetchone()
        if row is None:
            raise RecordNotFound()
        return _row_to_toy(row)

    def update_toy(self, toy: Toy) -> None:
        """Write every mutable field of toy, version-matched.

        toy.version must be the version that was read. On success it is
        replaced by the incremented value; if another writer got there first
        (or the toy was deleted meanwhile) EditConflict is raised and toy is
        left unchanged.
        """
        with persistence_guard("update toy"), self.engine.connect() as conn:
            result = conditional_update(conn, _toys, toy.id, toy.version, _toy_columns(toy))
            conn.commit()
        if not result.applied:
            raise EditConflict()
        toy.version = result.version

    def delete_toy(self, toy_id: int) -> None:
        """Delete a toy and, through ON DELETE CASCADE, its comments."""
        if toy_id < 1:
            raise RecordNotFound()
        with persistence_guard("delete toy"), self.engine.connect() as conn:
            result = conn.execute(_toys.delete().where(_toys.c.id == toy_id))
            conn.commit()
        if result.rowcount == 0:
            raise RecordNotFound()

    def list_toys(
        self,
        title: str = "",
        skills: list[str] | None = None,
        categories: list[str] | None = None,
        value_from: int = DEFAULT_VALUE_FROM,
        value_to: int = DEFAULT_VALUE_TO,
        filters: Filters | None = None,
    ) -> tuple[list[Toy], Metadata]:
        """Return one page of toys matching every given criterion, plus page metadata.

        title       -- case-insensitive substring of the title ("" matches all)
        skills      -- toy must list every one of these skills
        categories  -- toy must list every one of these categories
        value_*     -- inclusive price range

        Every criterion, the ordering and the page cut run in SQL, so a request
        reads at most page_size rows. total_records counts all matches and is
        reported even for a page past the end.
        """
        filters = filters or Filters(sort_safelist=TOY_SORT_SAFELIST)
        column = _SORT_COLUMNS[filters.sort_key()]

        with persistence_guard("list toys"), self.engine.connect() as conn:
            dialect = conn.dialect.name
            conditions = [_toys.c.value.between(value_from, value_to)]
            if title:
                conditions.append(func.lower(_toys.c.title).contains(title.lower(), autoescape=True))
            conditions.extend(_contains_all(dialect, _toys.c.skills, skills or []))
            conditions.extend(_contains_all(dialect, _toys.c.categories, categories or []))

            total = conn.execute(select(func.count()).select_from(_toys).where(*conditions)).scalar_one()
            rows = conn.execute(
                _toys.select()
                .where(*conditions)
                .order_by(column.desc() if filters.descending() else column.asc(), _toys.c.id.asc())
                .limit(filters.limit())
                .offset(filters.offset())
            ).fetchall()

        return [_row_to_toy(r) for r in rows], calculate_metadata(total, filters.page, filters.page_size)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def insert_comment(self, comment: Comment) -> None:
        """Insert a comment, filling in id and created_at.

        Raises RecordNotFound if the toy does not exist (foreign key).
        """
        created_at = _now_iso()
        with persistence_guard("insert comment"), self.engine.connect() as conn:
            try:
                result = conn.execute(
                    _comments.insert().values(
                        created_at=created_at,
                        toy_id=comment.toy_id,
                        user_name=comment.user_name,
                        text=comment.text,
                        rating=comment.rating,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                if is_foreign_key_violation(exc):
                    raise RecordNotFound() from exc
                raise
        comment.id = result.inserted_primary_key[0]
        comment.created_at = created_at

    def get_comments_for_toy(self, toy_id: int) -> list[Comment]:
        """Return all comments on a toy, oldest first."""
        with persistence_guard("get comments"), self.engine.connect() as conn:
            rows = conn.execute(
                _comments.select().where(_comments.c.toy_id == toy_id).order_by(_comments.c.id)
            ).fetchall()
        return [_row_to_comment(r) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with persistence_guard("ping"), self.engine.connect() as conn:
                conn.execute(_toys.select().limit(1))
        except PersistenceError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _json_list(value: str | None) -> list[str]:
    return json.loads(value) if value else []


def _row_to_toy(row) -> Toy:
    return Toy(
        id=row.id,
        created_at=row.created_at,
        title=row.title,
        description=row.description or "",
        details=_json_list(row.details),
        skills=_json_list(row.skills),
        categories=_json_list(row.categories),
        images=_json_list(row.images),
        recommended_age=row.recommended_age,
        manufacturer=row.manufacturer,
        value=row.value,
        is_available=bool(row.is_available),
        wait_list=_json_list(row.wait_list),
        version=row.version,
    )


def _row_to_comment(row) -> Comment:
    return Comment(
        id=row.id,
        created_at=row.created_at,
        toy_id=row.toy_id,
        user_name=row.user_name,
        text=row.text,
        rating=row.rating,
    )
