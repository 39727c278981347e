"""
catalog/models.py -- Domain dataclasses for albums, movies, ratings, and profile summaries.

These are pure data containers with zero logic. Field rules (lengths, year
range, rating range) are enforced by the API request models; persistence and
aggregation live in catalog/store.py.

Albums and movies are owned resources: owner_user_id is set once at creation
and never changes. The guard in auth/guard.py reads it duck-typed.

id is None before the record is written to the database.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Album:
    """A record in the vinyl collection.

    like_count and liked_by_me are read-side aggregates filled in by the
    store's list/get queries; they are ignored on insert.
    """

    owner_user_id: int
    title: str
    artist: str
    genre: Optional[str] = None
    release_year: Optional[int] = None  # 1900..2100
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    like_count: int = 0
    liked_by_me: bool = False


@dataclass
class Movie:
    """A film entry. release_date is an ISO date string (YYYY-MM-DD)."""

    owner_user_id: int
    title: str
    genre: str
    release_date: str
    description: str
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
    rating_count: int = 0
    average_rating: Optional[float] = None  # None until the first rating


@dataclass
class Rating:
    """A 1-5 star rating. At most one per (user, movie); ratings are final."""

    user_id: int
    movie_id: int
    value: int
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class ProfileSummary:
    """Counts shown on a user's profile page plus their latest movies."""

    movie_count: int = 0
    album_count: int = 0
    rating_count: int = 0
    recent_movies: list[Movie] = field(default_factory=list)
