"""
catalog/models.py -- Domain dataclasses for the toy catalog.

These are pure data containers with zero logic. Persistence and version
arithmetic live in catalog/store.py; input validation lives in the API
request models.

id is None before a record is written to the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Toy:
    """A toy listing.

    version starts at 1 on insert and goes up by exactly one on every
    successful update (see CatalogStore.update_toy). List fields are stored
    as JSON arrays.
    """

    title: str
    manufacturer: str
    recommended_age: str
    value: int  # price in tenge
    description: str = ""
    details: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    is_available: bool = True
    wait_list: list[str] = field(default_factory=list)
    id: int | None = None
    version: int = 0
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Comment:
    """A user's comment and rating on a toy.

    Insert-only: comments are never updated, so they carry no version.
    """

    toy_id: int
    user_name: str
    text: str
    rating: int  # 0..5, see core/rating.py for the wire form
    id: int | None = None
    created_at: str = ""
