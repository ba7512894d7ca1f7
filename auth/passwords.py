"""
auth/passwords.py -- bcrypt password credential.

Password owns the plaintext -> hash transformation and verification for one
user. Only the hash is ever persisted. The plaintext is kept on the instance
after set() so request-scoped code can still inspect it, and is dropped by
clear(); registration clears it in a finally block. repr() shows neither.

bcrypt is used directly (no passlib wrapper), at the work factor configured
in Settings.bcrypt_cost. Length and strength policy is NOT enforced here --
request models validate that before a Password is built. The only failure
set() reports is the primitive itself failing (WeakHashingError), which for
bcrypt 4.1+ includes inputs beyond its 72-byte limit.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings
from core.errors import CorruptPasswordHash, WeakHashingError

_settings = get_settings()

# bcrypt only considers the first 72 bytes of input.
_BCRYPT_MAX_BYTES = 72


class Password:
    __slots__ = ("_plaintext", "hash")

    def __init__(self, hash: bytes | None = None) -> None:
        self._plaintext: str | None = None
        self.hash = hash

    def __repr__(self) -> str:
        return f"Password(set={self.hash is not None})"

    @property
    def plaintext(self) -> str | None:
        return self._plaintext

    def set(self, plaintext: str) -> None:
        """Hash plaintext and keep the hash.

        Raises WeakHashingError if bcrypt fails; the previous hash (if any)
        is left in place in that case.
        """
        try:
            hashed = bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=_settings.bcrypt_cost))
        except ValueError as exc:
            raise WeakHashingError() from exc
        self._plaintext = plaintext
        self.hash = hashed

    def clear(self) -> None:
        self._plaintext = None

    def matches(self, plaintext: str) -> bool:
        """Return True if plaintext matches the stored hash, False otherwise.

        A mismatch is never an error. CorruptPasswordHash is raised only when
        the stored hash is missing or malformed.
        """
        if not self.hash:
            raise CorruptPasswordHash()
        candidate = plaintext.encode("utf-8")
        # Nothing longer than bcrypt's limit could have been hashed by set().
        if len(candidate) > _BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(candidate, self.hash)
        except ValueError as exc:
            raise CorruptPasswordHash() from exc
