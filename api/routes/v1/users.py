"""
api/routes/v1/users.py -- Account registration, activation and token endpoints.

Routes:
  POST /v1/users                    -- register; 202, activation token sent out of band
  PUT  /v1/users/activated          -- redeem an activation token
  POST /v1/tokens/authentication    -- exchange email + password for a bearer token

Security:
  POST /tokens/authentication is rate-limited per IP (Settings.login_rate_limit).
  Unknown email and wrong password produce the same 401, and both paths run
  one bcrypt comparison so response time does not reveal which it was.
  Cache-Control: no-store on the token response.
  Token plaintexts appear in exactly two places: the activation sender's
  arguments and the authentication token response body. Neither is logged.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache

from fastapi import APIRouter, HTTPException, Request, Response

from api.limiter import limiter
from api.models import (
    ActivationRequest,
    AuthenticationRequest,
    ErrorDetail,
    TokenBody,
    TokenResponse,
    UserEnvelope,
    UserRegister,
    UserResponse,
)
from auth.models import (
    PERMISSION_TOYS_COMMENT,
    PERMISSION_TOYS_READ,
    SCOPE_ACTIVATION,
    SCOPE_AUTHENTICATION,
    Token,
    User,
)
from auth.passwords import Password
from auth.store import UserStore
from auth.tokens import issue_token, resolve_token, revoke_tokens
from core.config import get_settings
from core.errors import RecordNotFound

logger = logging.getLogger("oynas.api")

settings = get_settings()

# Granted to every new account. toys:write is handed out by an operator.
DEFAULT_PERMISSIONS = (PERMISSION_TOYS_READ, PERMISSION_TOYS_COMMENT)

router = APIRouter()


# ---------------------------------------------------------------------------
# Activation delivery
# ---------------------------------------------------------------------------


def log_activation_token(user: User, token: Token) -> None:
    """Default activation sender: records that a token is waiting, without the token.

    Installed on app.state.send_activation by the lifespan when no real
    delivery channel was configured. Signature: (user, token) -> None.
    """
    logger.info(
        "Activation token for user_id=%d expires %s (no delivery channel configured)",
        user.id,
        token.expiry.isoformat(),
    )


@lru_cache(maxsize=1)
def _dummy_password() -> Password:
    """A real bcrypt hash to compare against when the email is unknown."""
    password = Password()
    password.set("not-a-real-password")
    password.clear()
    return password


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=ErrorDetail(
            code="invalid_credentials",
            message="Invalid authentication credentials.",
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# POST /users -- register
# ---------------------------------------------------------------------------


@router.post("/users", response_model=UserEnvelope, status_code=202)
def register_user(request: Request, body: UserRegister) -> UserEnvelope:
    """Create an inactive account and send its activation token.

    202 rather than 201: the account exists but cannot be used until the
    activation token is redeemed.
    """
    store: UserStore = request.app.state.user_store
    user = User(name=body.name, email=body.email)
    user.password.set(body.password)
    try:
        token = store.register_user(
            user,
            DEFAULT_PERMISSIONS,
            timedelta(seconds=settings.activation_token_ttl_seconds),
        )
    finally:
        user.password.clear()
    request.app.state.send_activation(user, token)
    logger.info("Registered user_id=%d", user.id)
    return UserEnvelope(user=UserResponse.from_user(user))


# ---------------------------------------------------------------------------
# PUT /users/activated -- redeem activation token
# ---------------------------------------------------------------------------


@router.put("/users/activated", response_model=UserEnvelope)
def activate_user(request: Request, body: ActivationRequest) -> UserEnvelope:
    """Activate the account owning a live activation token.

    A token that does not resolve is a client input error (422 on "token"),
    not an authentication failure -- the request itself carries no identity.
    Every activation token of the user is revoked afterwards.
    """
    store: UserStore = request.app.state.user_store
    try:
        user = resolve_token(store, SCOPE_ACTIVATION, body.token)
    except RecordNotFound as exc:
        raise HTTPException(
            status_code=422,
            detail=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail="token: invalid or expired activation token",
            ).model_dump(),
        ) from exc

    user.activated = True
    store.update_user(user)
    revoke_tokens(store, SCOPE_ACTIVATION, user.id)
    logger.info("Activated user_id=%d", user.id)
    return UserEnvelope(user=UserResponse.from_user(user))


# ---------------------------------------------------------------------------
# POST /tokens/authentication -- login
# ---------------------------------------------------------------------------


@limiter.limit(settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/tokens/authentication", response_model=TokenResponse, status_code=201)
def create_authentication_token(request: Request, response: Response, body: AuthenticationRequest) -> TokenResponse:
    """Issue a bearer token for valid credentials.

    Inactive accounts may log in; the activation check happens per route.
    """
    store: UserStore = request.app.state.user_store
    try:
        user = store.get_user_by_email(body.email)
    except RecordNotFound as exc:
        _dummy_password().matches(body.password)
        raise _invalid_credentials() from exc

    if not user.password.matches(body.password):
        logger.info("Failed login for user_id=%d", user.id)
        raise _invalid_credentials()

    token = issue_token(
        store,
        user.id,
        timedelta(seconds=settings.authentication_token_ttl_seconds),
        SCOPE_AUTHENTICATION,
    )
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse(authentication_token=TokenBody.from_token(token))
