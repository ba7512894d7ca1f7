"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in catalog/models.py -- dataclasses own domain shape; stores, the token
issuer and the routes do the work.

Request identity is a tagged value: Authenticated(user) for a request that
presented a valid token, ANONYMOUS for one that presented none. Code checks
which one it holds with isinstance(), never by comparing user objects.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from auth.passwords import Password

SCOPE_ACTIVATION = "activation"
SCOPE_AUTHENTICATION = "authentication"

PERMISSION_TOYS_READ = "toys:read"
PERMISSION_TOYS_WRITE = "toys:write"
PERMISSION_TOYS_COMMENT = "toys:comment"


@dataclass
class User:
    """A registered account.

    version starts at 1 on insert and goes up by exactly one on every
    successful update; the store uses it as the compare-and-swap key.
    Permission codes are not embedded -- they are looked up per request.

    id is None before the record is written to the database.
    """

    name: str
    email: str
    password: Password = field(default_factory=Password, repr=False)
    role: str = "user"
    activated: bool = False
    id: int | None = None
    version: int = 0
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Token:
    """A bearer token.

    plaintext is filled exactly once, by auth.tokens.generate_token(), and is
    never persisted -- only hash (SHA-256 hex of the plaintext) is stored.
    """

    hash: str
    user_id: int
    expiry: datetime
    scope: str
    plaintext: str = field(default="", repr=False)


@dataclass(frozen=True)
class Anonymous:
    """Identity bound to requests without a bearer token.

    Never activated, holds no permissions.
    """

    activated: bool = False


@dataclass(frozen=True)
class Authenticated:
    user: User

    @property
    def activated(self) -> bool:
        return self.user.activated


ANONYMOUS = Anonymous()

Identity = Union[Authenticated, Anonymous]
