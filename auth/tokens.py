"""
auth/tokens.py -- Bearer token issuer: generation, hashing, resolution, revocation.

Security design decisions:
  Tokens: 16 bytes from secrets.token_bytes() (128 bits of entropy), base32
       encoded without padding -> always 26 characters. The plaintext is
       returned to the caller once, in the Token returned by issue_token(),
       and never stored.

  Storage: SHA-256 hex digest of the plaintext. A fast unsalted hash is
       enough here -- 128 random bits make brute force infeasible, and a
       deterministic hash is what lets resolve_token() look a token up by
       equality. bcrypt's intentional slowness is for low-entropy passwords.

  Resolution: unknown token, token of another scope and expired token all
       fail with the same RecordNotFound. Callers cannot learn which part was
       wrong, and neither can an attacker probing the endpoint.

  Scopes: "activation" (e-mail confirmation of a new account) and
       "authentication" (API access). A token never crosses scopes.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from auth.models import SCOPE_ACTIVATION, SCOPE_AUTHENTICATION, Token, User
from core.errors import RecordNotFound

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("oynas.auth")

SCOPES = frozenset({SCOPE_ACTIVATION, SCOPE_AUTHENTICATION})
TOKEN_BYTES = 16
TOKEN_LENGTH = 26  # len(base32(16 bytes)) with the padding stripped


def hash_token(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def is_well_formed(plaintext: str) -> bool:
    """Cheap shape check run before any lookup is attempted."""
    return bool(plaintext) and len(plaintext) == TOKEN_LENGTH


def generate_token(user_id: int, ttl: timedelta, scope: str, now: datetime) -> Token:
    """Build a Token with a fresh plaintext, its hash, and expiry = now + ttl."""
    if scope not in SCOPES:
        raise ValueError(f"unknown token scope: {scope!r}")
    plaintext = base64.b32encode(secrets.token_bytes(TOKEN_BYTES)).decode("ascii").rstrip("=")
    return Token(
        hash=hash_token(plaintext),
        user_id=user_id,
        expiry=now + ttl,
        scope=scope,
        plaintext=plaintext,
    )


def issue_token(store: UserStore, user_id: int, ttl: timedelta, scope: str) -> Token:
    """Generate and persist a token; return it with its plaintext populated.

    Raises PersistenceError if the write fails. The plaintext was never
    stored in that case and cannot be recovered -- discard it.
    """
    token = generate_token(user_id, ttl, scope, store.clock())
    store.insert_token(token)
    logger.info("Issued %s token for user_id=%d (expires %s)", scope, user_id, token.expiry.isoformat())
    return token


def resolve_token(store: UserStore, scope: str, plaintext: str) -> User:
    """Return the owner of a live token in scope.

    Raises RecordNotFound for a malformed, unknown, wrong-scope or expired
    token alike. A malformed plaintext never reaches the database.
    """
    if not is_well_formed(plaintext):
        raise RecordNotFound()
    return store.get_for_token(scope, hash_token(plaintext))


def revoke_tokens(store: UserStore, scope: str, user_id: int) -> None:
    """Delete every token user_id holds in scope."""
    removed = store.delete_tokens_for_user(scope, user_id)
    logger.info("Revoked %d %s token(s) for user_id=%d", removed, scope, user_id)
