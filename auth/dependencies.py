"""
auth/dependencies.py -- Authentication/authorization gate and its FastAPI Depends() helpers.

Two stages per request, always in this order:

  1. Authenticate: the Authorization header is turned into an Identity.
       no header / not "Bearer <token>"   -> ANONYMOUS
       "Bearer <token>" that resolves     -> Authenticated(user)
       "Bearer <token>" that does not     -> InvalidOrExpiredToken
     The identity is cached on request.state for the rest of the request.

  2. Authorize: the identity is checked against what the route needs.
       require_activated()  -- account activation only (e.g. health checks)
       authorize()          -- one permission code (e.g. "toys:write")
     ANONYMOUS never passes either check (AuthenticationRequired).

The pure functions (authenticate_request, authorize, require_activated) raise
core.errors exceptions; api/main.py maps those to HTTP responses. The FastAPI
wrappers (get_identity, require_activated_user, require_permission) only
fetch collaborators from app.state and call them.

Layer rule: no imports from api/ or catalog/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from fastapi import Request

from auth.models import ANONYMOUS, SCOPE_AUTHENTICATION, Authenticated, Identity, User
from auth.store import UserStore
from auth.tokens import resolve_token
from core.errors import AccountNotActivated, AuthenticationRequired, Forbidden, InvalidOrExpiredToken, RecordNotFound

_BEARER_PREFIX = "Bearer "


# ---------------------------------------------------------------------------
# Stage 1 -- authentication
# ---------------------------------------------------------------------------


def parse_bearer(raw_header: str | None) -> str | None:
    """Return the token from "Bearer <token>", or None for any other shape."""
    if not raw_header or not raw_header.startswith(_BEARER_PREFIX):
        return None
    token = raw_header[len(_BEARER_PREFIX) :].strip()
    return token or None


def authenticate_request(store: UserStore, raw_header: str | None) -> Identity:
    """Turn a raw Authorization header value into an Identity.

    Raises InvalidOrExpiredToken when a bearer token is presented but does
    not resolve. The cause is deliberately not distinguished.
    """
    token = parse_bearer(raw_header)
    if token is None:
        return ANONYMOUS
    try:
        user = resolve_token(store, SCOPE_AUTHENTICATION, token)
    except RecordNotFound as exc:
        raise InvalidOrExpiredToken() from exc
    return Authenticated(user)


# ---------------------------------------------------------------------------
# Stage 2 -- authorization
# ---------------------------------------------------------------------------


def require_authenticated(identity: Identity) -> User:
    if not isinstance(identity, Authenticated):
        raise AuthenticationRequired()
    return identity.user


def require_activated(identity: Identity) -> User:
    """Pass only an authenticated identity whose account is activated."""
    user = require_authenticated(identity)
    if not user.activated:
        raise AccountNotActivated()
    return user


def authorize(identity: Identity, required: str, permissions: Iterable[str]) -> User:
    """Pass only an authenticated identity that holds the required permission code.

    permissions is the identity's granted set, looked up by the caller.
    """
    user = require_authenticated(identity)
    if required not in set(permissions):
        raise Forbidden()
    return user


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_identity(request: Request) -> Identity:
    """Authenticate the request once and cache the result on request.state.

    Use as a FastAPI dependency:
        @router.get("/whoami")
        def route(identity: Identity = Depends(get_identity)): ...
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        user_store: UserStore = request.app.state.user_store
        identity = authenticate_request(user_store, request.headers.get("Authorization"))
        request.state.identity = identity
    return identity


def require_activated_user(request: Request) -> User:
    """Require an activated account.

    Use as a FastAPI dependency:
        @router.get("/healthcheck")
        def route(user: User = Depends(require_activated_user)): ...
    """
    return require_activated(get_identity(request))


def require_permission(code: str) -> Callable[[Request], User]:
    """Build a dependency requiring an activated account that holds code.

    Use as a FastAPI dependency:
        @router.post("/toy")
        def route(user: User = Depends(require_permission("toys:write"))): ...
    """

    def dependency(request: Request) -> User:
        identity = get_identity(request)
        user = require_activated(identity)
        user_store: UserStore = request.app.state.user_store
        return authorize(identity, code, user_store.get_permissions(user.id))

    dependency.__name__ = f"require_permission_{code.replace(':', '_')}"
    return dependency
