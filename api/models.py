"""
API request and response models for VinylRewind REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Registration and login bodies are deliberately loose (plain strings with
empty defaults): their rules live in auth/registration.py so that every
violation is reported at once, in one place, with the same messages.

Separation of concerns: auth/ and catalog/ models = domain truth;
api/ models = API contract.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import FieldError
from catalog.models import Album, Movie, Rating

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FieldErrorModel(BaseModel):
    """One invalid input field."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str
    code: str = "invalid"

    @classmethod
    def from_field_error(cls, err: FieldError) -> "FieldErrorModel":
        return cls(field=err.field, message=err.message, code=err.code)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[FieldErrorModel]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    username: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    identifier is either the username or the email address.
    """

    identifier: str = Field(default="", max_length=254)
    password: str = Field(default="", max_length=1024)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Albums
# ---------------------------------------------------------------------------


class AlbumCreate(BaseModel):
    """Request body for POST /api/v1/albums."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    artist: str = Field(min_length=1, max_length=200)
    genre: Optional[str] = Field(default=None, max_length=100)
    release_year: Optional[int] = Field(default=None, ge=1900, le=2100)


class AlbumPatch(BaseModel):
    """Request body for PATCH /api/v1/albums/{id}. Only sent fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    artist: Optional[str] = Field(default=None, min_length=1, max_length=200)
    genre: Optional[str] = Field(default=None, max_length=100)
    release_year: Optional[int] = Field(default=None, ge=1900, le=2100)

    @field_validator("title", "artist")
    @classmethod
    def not_null(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("may not be null")
        return v


class AlbumResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    owner_user_id: int
    title: str
    artist: str
    genre: Optional[str]
    release_year: Optional[int]
    created_at: str
    updated_at: str
    like_count: int = 0
    liked_by_me: bool = False

    @classmethod
    def from_album(cls, album: Album) -> "AlbumResponse":
        """Factory method: the domain-to-wire mapping lives beside the wire model."""
        return cls(
            id=album.id,
            owner_user_id=album.owner_user_id,
            title=album.title,
            artist=album.artist,
            genre=album.genre,
            release_year=album.release_year,
            created_at=album.created_at,
            updated_at=album.updated_at,
            like_count=album.like_count,
            liked_by_me=album.liked_by_me,
        )


class LikeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    album_id: int
    liked: bool
    like_count: int


# ---------------------------------------------------------------------------
# Movies and ratings
# ---------------------------------------------------------------------------


class MovieCreate(BaseModel):
    """Request body for POST /api/v1/movies."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=2, max_length=200)
    genre: str = Field(min_length=2, max_length=100)
    release_date: date
    description: str = Field(min_length=10, max_length=5000)


class MoviePatch(BaseModel):
    """Request body for PATCH /api/v1/movies/{id}. Only sent fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=2, max_length=200)
    genre: Optional[str] = Field(default=None, min_length=2, max_length=100)
    release_date: Optional[date] = None
    description: Optional[str] = Field(default=None, min_length=10, max_length=5000)

    @field_validator("title", "genre", "release_date", "description")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class RatingCreate(BaseModel):
    """Request body for POST /api/v1/movies/{id}/ratings."""

    value: int = Field(ge=1, le=5)


class RatingResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    movie_id: int
    value: int
    created_at: str

    @classmethod
    def from_rating(cls, rating: Rating) -> "RatingResponse":
        return cls(
            id=rating.id,
            user_id=rating.user_id,
            movie_id=rating.movie_id,
            value=rating.value,
            created_at=rating.created_at,
        )


class MovieResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    owner_user_id: int
    title: str
    genre: str
    release_date: str
    description: str
    created_at: str
    updated_at: str
    rating_count: int = 0
    average_rating: Optional[float] = None

    @classmethod
    def from_movie(cls, movie: Movie) -> "MovieResponse":
        return cls(
            id=movie.id,
            owner_user_id=movie.owner_user_id,
            title=movie.title,
            genre=movie.genre,
            release_date=movie.release_date,
            description=movie.description,
            created_at=movie.created_at,
            updated_at=movie.updated_at,
            rating_count=movie.rating_count,
            average_rating=round(movie.average_rating, 2) if movie.average_rating is not None else None,
        )


class MovieDetailResponse(MovieResponse):
    """Single movie with its ratings and whether the viewer has rated it."""

    ratings: list[RatingResponse] = Field(default_factory=list)
    has_rated: bool = False


class ProfileResponse(BaseModel):
    """Response for GET /api/v1/auth/profile."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: str
    member_since: str
    movie_count: int
    album_count: int
    rating_count: int
    recent_movies: list[MovieResponse] = Field(default_factory=list)
