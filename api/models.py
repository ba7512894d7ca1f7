"""
API request and response models for the Oynas REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

JSON field names follow the public wire format (desc, recAge, isAvailable,
waitList); Python attribute names stay snake_case. populate_by_name lets
handlers and tests construct models either way.

Byte limits (title, desc, comment text, password) are counted on the UTF-8
encoding, not on characters -- Cyrillic text takes two bytes per letter.
"""

from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import Token, User
from catalog.models import Comment, Toy
from core.rating import format_rating, parse_rating

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_NAME_BYTES = 500
MIN_PASSWORD_BYTES = 8
MAX_PASSWORD_BYTES = 72  # bcrypt only reads the first 72 bytes
MAX_TITLE_BYTES = 500
MAX_DESC_BYTES = 5000
MAX_DETAILS = 5
MAX_TAGS = 7
MIN_VALUE = 1000
MAX_VALUE = 150_000
MAX_COMMENT_BYTES = 1000


def _check_bytes(value: str, low: int, high: int) -> str:
    size = len(value.encode("utf-8"))
    if size < low:
        raise ValueError("must be provided" if low == 1 else f"must be at least {low} bytes long")
    if size > high:
        raise ValueError(f"must not be more than {high} bytes long")
    return value


def _check_unique(values: list[str]) -> list[str]:
    if len(set(values)) != len(values):
        raise ValueError("must not contain duplicate values")
    return values


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /v1/healthcheck."""

    model_config = ConfigDict(frozen=True)

    status: str = "available"
    version: str
    database: str


# ---------------------------------------------------------------------------
# Users and tokens
# ---------------------------------------------------------------------------


class UserRegister(BaseModel):
    """Request body for POST /v1/users. The password is taken byte for byte."""

    name: str
    email: EmailStr
    password: str

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _check_bytes(value.strip(), 1, MAX_NAME_BYTES)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_bytes(value, MIN_PASSWORD_BYTES, MAX_PASSWORD_BYTES)


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str
    name: str
    email: str
    role: str
    activated: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            created_at=user.created_at,
            name=user.name,
            email=user.email,
            role=user.role,
            activated=user.activated,
        )


class UserEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class ActivationRequest(BaseModel):
    """Request body for PUT /v1/users/activated."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1)


class AuthenticationRequest(BaseModel):
    """Request body for POST /v1/tokens/authentication."""

    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_bytes(value, MIN_PASSWORD_BYTES, MAX_PASSWORD_BYTES)


class TokenBody(BaseModel):
    """A freshly issued token. The only place a token plaintext ever appears."""

    model_config = ConfigDict(frozen=True)

    token: str
    expiry: str

    @classmethod
    def from_token(cls, token: Token) -> "TokenBody":
        return cls(token=token.plaintext, expiry=token.expiry.isoformat())


class TokenResponse(BaseModel):
    """Response for POST /v1/tokens/authentication."""

    model_config = ConfigDict(frozen=True)

    authentication_token: TokenBody


# ---------------------------------------------------------------------------
# Toys
# ---------------------------------------------------------------------------


class ToyCreate(BaseModel):
    """Request body for POST /v1/toy, and the full re-validation step of PATCH."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    title: str
    description: str = Field(default="", alias="desc")
    details: list[str] = Field(default_factory=list, max_length=MAX_DETAILS)
    skills: list[str] = Field(min_length=1, max_length=MAX_TAGS)
    categories: list[str] = Field(min_length=1, max_length=MAX_TAGS)
    images: list[str] = Field(default_factory=list)
    recommended_age: str = Field(alias="recAge", min_length=1)
    manufacturer: str = Field(min_length=1)
    value: int = Field(ge=MIN_VALUE, le=MAX_VALUE)
    is_available: bool = Field(default=True, alias="isAvailable")
    wait_list: list[str] = Field(default_factory=list, alias="waitList")

    @field_validator("title")
    @classmethod
    def check_title(cls, value: str) -> str:
        return _check_bytes(value, 1, MAX_TITLE_BYTES)

    @field_validator("description")
    @classmethod
    def check_description(cls, value: str) -> str:
        return _check_bytes(value, 0, MAX_DESC_BYTES)

    @field_validator("skills", "categories")
    @classmethod
    def check_tags(cls, values: list[str]) -> list[str]:
        return _check_unique(values)

    @field_validator("images")
    @classmethod
    def check_images(cls, values: list[str]) -> list[str]:
        for url in values:
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(f"must be an http(s) URL: {url!r}")
        return values

    def to_toy(self) -> Toy:
        return Toy(**self.model_dump())


class ToyPatch(BaseModel):
    """Request body for PATCH /v1/toy/{id}.

    Every field is optional; only the fields present in the request are
    applied. The merged toy is then validated as a whole through ToyCreate.
    """

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = Field(default=None, alias="desc")
    details: Optional[list[str]] = None
    skills: Optional[list[str]] = None
    categories: Optional[list[str]] = None
    images: Optional[list[str]] = None
    recommended_age: Optional[str] = Field(default=None, alias="recAge")
    manufacturer: Optional[str] = None
    value: Optional[int] = None
    is_available: Optional[bool] = Field(default=None, alias="isAvailable")
    wait_list: Optional[list[str]] = Field(default=None, alias="waitList")


class ToyResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    created_at: str
    title: str
    description: str = Field(alias="desc")
    details: list[str]
    skills: list[str]
    categories: list[str]
    images: list[str]
    recommended_age: str = Field(alias="recAge")
    manufacturer: str
    value: int
    is_available: bool = Field(alias="isAvailable")
    wait_list: list[str] = Field(alias="waitList")
    version: int

    @classmethod
    def from_toy(cls, toy: Toy) -> "ToyResponse":
        return cls(
            id=toy.id,
            created_at=toy.created_at,
            title=toy.title,
            description=toy.description,
            details=toy.details,
            skills=toy.skills,
            categories=toy.categories,
            images=toy.images,
            recommended_age=toy.recommended_age,
            manufacturer=toy.manufacturer,
            value=toy.value,
            is_available=toy.is_available,
            wait_list=toy.wait_list,
            version=toy.version,
        )


class ToyEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    toy: ToyResponse


class PageMetadata(BaseModel):
    """Pagination block of a list response. All fields absent when nothing matched."""

    model_config = ConfigDict(frozen=True)

    current_page: Optional[int] = None
    page_size: Optional[int] = None
    first_page: Optional[int] = None
    last_page: Optional[int] = None
    total_records: Optional[int] = None


class ToyListResponse(BaseModel):
    """Response for GET /v1/toys."""

    model_config = ConfigDict(frozen=True)

    toys: list[ToyResponse]
    metadata: PageMetadata


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class CommentCreate(BaseModel):
    """Request body for POST /v1/toy/{id}/comment.

    rating arrives in its text form ("4 из 5") and leaves validation as an
    int. parse_rating raises InvalidRatingFormat, a ValueError, so a bad
    rating is reported like any other field error.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    text: str
    rating: int

    @field_validator("text")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _check_bytes(value, 1, MAX_COMMENT_BYTES)

    @field_validator("rating", mode="before")
    @classmethod
    def parse_rating_text(cls, value) -> int:
        if not isinstance(value, str):
            raise ValueError('must be a string such as "4 из 5"')
        return parse_rating(value)


class CommentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str
    toy_id: int
    user_name: str
    text: str
    rating: str

    @classmethod
    def from_comment(cls, comment: Comment) -> "CommentResponse":
        return cls(
            id=comment.id,
            created_at=comment.created_at,
            toy_id=comment.toy_id,
            user_name=comment.user_name,
            text=comment.text,
            rating=format_rating(comment.rating),
        )


class CommentEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    comment: CommentResponse


class ToyDetailResponse(BaseModel):
    """Response for GET /v1/toy/{id}: the toy and every comment on it."""

    model_config = ConfigDict(frozen=True)

    toy: ToyResponse
    comments: list[CommentResponse]
