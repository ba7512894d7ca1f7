"""
api/routes/v1/toys.py -- Toy catalog and comment routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /toys                    -- filtered, sorted, paginated list   (toys:read)
  POST   /toy                     -- create toy                         (toys:write)
  GET    /toy/{toy_id}            -- toy detail with its comments       (toys:read)
  PATCH  /toy/{toy_id}            -- partial update, version-checked    (toys:write)
  DELETE /toy/{toy_id}            -- delete toy and its comments        (toys:write)
  POST   /toy/{toy_id}/comment    -- comment with a rating              (toys:comment)

Every route requires an activated account holding the listed permission;
see auth.dependencies.require_permission.

PATCH semantics:
  Only the fields present in the body change. The merged toy is validated
  as a whole (ToyCreate), then written with the version that was read. A
  concurrent writer in between makes the write fail with 409 edit_conflict;
  nothing is retried.
"""

import dataclasses
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from api.models import (
    CommentCreate,
    CommentEnvelope,
    CommentResponse,
    ErrorDetail,
    PageMetadata,
    ToyCreate,
    ToyDetailResponse,
    ToyEnvelope,
    ToyListResponse,
    ToyPatch,
    ToyResponse,
)
from auth.dependencies import require_permission
from auth.models import PERMISSION_TOYS_COMMENT, PERMISSION_TOYS_READ, PERMISSION_TOYS_WRITE, User
from catalog.models import Comment
from catalog.store import DEFAULT_VALUE_FROM, DEFAULT_VALUE_TO, TOY_SORT_SAFELIST, CatalogStore
from core.filters import Filters

logger = logging.getLogger("oynas.catalog")

router = APIRouter()

_can_read = require_permission(PERMISSION_TOYS_READ)
_can_write = require_permission(PERMISSION_TOYS_WRITE)
_can_comment = require_permission(PERMISSION_TOYS_COMMENT)

# Toy fields that are stored but never supplied by clients.
_SERVER_FIELDS = {"id", "version", "created_at"}


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


# ---------------------------------------------------------------------------
# GET /toys -- list
# ---------------------------------------------------------------------------


@router.get("/toys", response_model=ToyListResponse, response_model_exclude_none=True)
def list_toys(
    request: Request,
    title: str = "",
    skills: str = "",
    categories: str = "",
    value_from: int = Query(DEFAULT_VALUE_FROM, alias="from"),
    value_to: int = Query(DEFAULT_VALUE_TO, alias="to"),
    page: int = 1,
    page_size: int = 20,
    sort: str = "id",
    user: User = Depends(_can_read),
) -> ToyListResponse:
    """List toys.

    Query params:
      title       -- case-insensitive substring match
      skills      -- comma-separated; toy must have all of them
      categories  -- comma-separated; toy must have all of them
      from, to    -- inclusive value range
      page, page_size, sort -- see core.filters; sort is one of id, title,
                     recAge, value, optionally prefixed with "-"
    """
    filters = Filters(page=page, page_size=page_size, sort=sort, sort_safelist=TOY_SORT_SAFELIST)
    problems = filters.validate()
    if problems:
        raise HTTPException(
            status_code=422,
            detail=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail="; ".join(f"{field}: {msg}" for field, msg in problems.items()),
            ).model_dump(),
        )

    catalog: CatalogStore = request.app.state.catalog
    toys, metadata = catalog.list_toys(
        title=title.strip(),
        skills=_split_csv(skills),
        categories=_split_csv(categories),
        value_from=value_from,
        value_to=value_to,
        filters=filters,
    )
    return ToyListResponse(
        toys=[ToyResponse.from_toy(t) for t in toys],
        metadata=PageMetadata(**metadata.as_dict()),
    )


# ---------------------------------------------------------------------------
# POST /toy -- create
# ---------------------------------------------------------------------------


@router.post("/toy", response_model=ToyEnvelope, status_code=201)
def create_toy(
    request: Request,
    response: Response,
    body: ToyCreate,
    user: User = Depends(_can_write),
) -> ToyEnvelope:
    catalog: CatalogStore = request.app.state.catalog
    toy = body.to_toy()
    catalog.insert_toy(toy)
    logger.info("Toy %d created by user_id=%d", toy.id, user.id)
    response.headers["Location"] = f"/v1/toy/{toy.id}"
    return ToyEnvelope(toy=ToyResponse.from_toy(toy))


# ---------------------------------------------------------------------------
# GET /toy/{toy_id} -- detail
# ---------------------------------------------------------------------------


@router.get("/toy/{toy_id}", response_model=ToyDetailResponse)
def get_toy(request: Request, toy_id: int, user: User = Depends(_can_read)) -> ToyDetailResponse:
    catalog: CatalogStore = request.app.state.catalog
    toy = catalog.get_toy(toy_id)
    comments = catalog.get_comments_for_toy(toy.id)
    return ToyDetailResponse(
        toy=ToyResponse.from_toy(toy),
        comments=[CommentResponse.from_comment(c) for c in comments],
    )


# ---------------------------------------------------------------------------
# PATCH /toy/{toy_id} -- partial update
# ---------------------------------------------------------------------------


@router.patch("/toy/{toy_id}", response_model=ToyEnvelope)
def update_toy(
    request: Request,
    toy_id: int,
    body: ToyPatch,
    user: User = Depends(_can_write),
) -> ToyEnvelope:
    """Apply the supplied fields to the stored toy and write it back.

    Fields explicitly sent as null are applied too, and then fail validation
    if the field is required.
    """
    catalog: CatalogStore = request.app.state.catalog
    toy = catalog.get_toy(toy_id)

    current = {k: v for k, v in dataclasses.asdict(toy).items() if k not in _SERVER_FIELDS}
    current.update(body.model_dump(exclude_unset=True))
    try:
        merged = ToyCreate.model_validate(current)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    for name, value in merged.model_dump().items():
        setattr(toy, name, value)
    catalog.update_toy(toy)
    logger.info("Toy %d updated to version %d by user_id=%d", toy.id, toy.version, user.id)
    return ToyEnvelope(toy=ToyResponse.from_toy(toy))


# ---------------------------------------------------------------------------
# DELETE /toy/{toy_id}
# ---------------------------------------------------------------------------


@router.delete("/toy/{toy_id}")
def delete_toy(request: Request, toy_id: int, user: User = Depends(_can_write)) -> dict:
    catalog: CatalogStore = request.app.state.catalog
    catalog.delete_toy(toy_id)
    logger.info("Toy %d deleted by user_id=%d", toy_id, user.id)
    return {"message": "toy successfully deleted"}


# ---------------------------------------------------------------------------
# POST /toy/{toy_id}/comment
# ---------------------------------------------------------------------------


@router.post("/toy/{toy_id}/comment", response_model=CommentEnvelope, status_code=201)
def create_comment(
    request: Request,
    toy_id: int,
    body: CommentCreate,
    user: User = Depends(_can_comment),
) -> CommentEnvelope:
    """Attach a comment to an existing toy. The author name is the caller's."""
    catalog: CatalogStore = request.app.state.catalog
    toy = catalog.get_toy(toy_id)
    comment = Comment(toy_id=toy.id, user_name=user.name, text=body.text, rating=body.rating)
    catalog.insert_comment(comment)
    return CommentEnvelope(comment=CommentResponse.from_comment(comment))
