"""
api/main.py -- FastAPI application entry point for the Oynas toy-catalog API.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for Settings.cors_trusted_origins
  3. SlowAPIMiddleware     -- enforces the global per-IP limit from api.limiter
  4. log_requests          -- one access log line per request

Lifespan opens the user and catalog stores on startup and closes them on
shutdown. Both stores are attached to app.state; route handlers and the auth
dependencies fetch them from there.

Error mapping:
  Every core.errors exception that reaches the boundary is turned into the
  ErrorResponse envelope by one handler, using _ERROR_STATUS below. 5xx
  failures are logged with their traceback; the client only ever sees a
  generic message.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.toys import router as toys_router
from api.routes.v1.users import log_activation_token
from api.routes.v1.users import router as users_router
from auth.dependencies import require_activated_user
from auth.models import User
from auth.store import UserStore
from catalog.store import CatalogStore
from core.config import get_settings
from core.errors import (
    AccountNotActivated,
    AuthenticationRequired,
    DuplicateEmail,
    EditConflict,
    Forbidden,
    InvalidOrExpiredToken,
    InvalidRatingFormat,
    OynasError,
    RecordNotFound,
)

API_VERSION = "1.0.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("oynas.api")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores on startup and close them on shutdown.

    The activation sender is only installed if nothing else was attached
    first, so a deployment (or a test) can plug in real delivery.
    """
    logger.info("Oynas API starting up")
    app.state.user_store = UserStore()
    app.state.catalog = CatalogStore()
    if not hasattr(app.state, "send_activation"):
        app.state.send_activation = log_activation_token
    logger.info("Stores initialized (database=%s)", app.state.user_store.engine.url.render_as_string())

    yield

    app.state.catalog.close()
    app.state.user_store.close()
    logger.info("Oynas API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Oynas API",
    description="Toy catalog with user accounts, bearer tokens and per-permission access control.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_trusted_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(users_router, prefix="/v1", tags=["Users"])
app.include_router(toys_router, prefix="/v1", tags=["Toys"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Checked in order; subclasses must precede their bases
# (AuthenticationRequired before Forbidden).
_ERROR_STATUS: tuple[tuple[type[OynasError], int, str], ...] = (
    (RecordNotFound, 404, "not_found"),
    (EditConflict, 409, "edit_conflict"),
    (DuplicateEmail, 422, "duplicate_email"),
    (InvalidRatingFormat, 422, "invalid_rating"),
    (AuthenticationRequired, 401, "authentication_required"),
    (InvalidOrExpiredToken, 401, "invalid_token"),
    (AccountNotActivated, 403, "inactive_account"),
    (Forbidden, 403, "forbidden"),
)


def classify_error(exc: OynasError) -> tuple[int, str]:
    """Return (HTTP status, error code) for a domain error. Unlisted errors are 500."""
    for cls, status, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return status, code
    return 500, "internal_error"


@app.exception_handler(OynasError)
async def oynas_error_handler(request: Request, exc: OynasError) -> JSONResponse:
    status, code = classify_error(exc)
    if status >= 500:
        # PersistenceError, WeakHashingError, CorruptPasswordHash -- the
        # driver/library cause is in the traceback, never in the response.
        logger.exception("Server error on %s %s", request.method, request.url.path)
        message = "The server encountered a problem and could not process your request."
    else:
        message = str(exc)
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )
    if isinstance(exc, InvalidOrExpiredToken):
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Rate limit exceeded.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=_describe_validation_errors(exc.errors()),
            )
        ).model_dump(),
    )


def _describe_validation_errors(errors) -> str:
    """Flatten Pydantic's error list into "field: message; field: message"."""
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        parts.append(f"{'.'.join(loc) or 'request'}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="The server encountered a problem and could not process your request.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router). Requires an activated
# account; the database check is a trivial query against each store.
# ---------------------------------------------------------------------------


@app.get("/v1/healthcheck", response_model=HealthResponse, tags=["Health"])
def healthcheck(request: Request, user: User = Depends(require_activated_user)) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    user_store: UserStore = request.app.state.user_store
    catalog: CatalogStore = request.app.state.catalog
    database_ok = user_store.ping() and catalog.ping()
    return HealthResponse(
        status="available" if database_ok else "degraded",
        version=API_VERSION,
        database="ok" if database_ok else "unavailable",
    )
