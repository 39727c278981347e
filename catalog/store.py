"""
catalog/store.py -- SQLAlchemy Core persistence for albums, likes, movies, and ratings.

Pattern: Repository + Data Mapper. CatalogStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route
handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Ownership:
  albums.owner_user_id and movies.owner_user_id reference users.id with
  ON DELETE CASCADE. update_album() / update_movie() only accept the content
  columns listed in _ALBUM_FIELDS / _MOVIE_FIELDS, so the owner can never be
  reassigned through an update.

Uniqueness:
  likes is UNIQUE(user_id, album_id); like() treats a duplicate as a no-op.
  ratings is UNIQUE(user_id, movie_id); add_rating() raises
  UniquenessViolation on a second rating, since ratings are final.

Usage:
    store = CatalogStore(engine)
    album_id = store.create_album(Album(owner_user_id=uid, title="Kind of Blue", artist="Miles Davis"))
    store.like(uid, album_id)
    albums = store.list_albums(sort="title", direction="asc", viewer_id=uid)
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    literal,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.store import users
from catalog.models import Album, Movie, ProfileSummary, Rating
from core.db import metadata, now_iso, store_errors
from core.errors import UniquenessViolation

logger = logging.getLogger("vinylrewind.catalog")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

albums = Table(
    "albums",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_user_id", Integer, ForeignKey(users.c.id, ondelete="CASCADE"), nullable=False, index=True),
    Column("title", String(200), nullable=False),
    Column("artist", String(200), nullable=False),
    Column("genre", String(100)),
    Column("release_year", Integer),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

likes = Table(
    "likes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey(users.c.id, ondelete="CASCADE"), nullable=False),
    Column("album_id", Integer, ForeignKey(albums.c.id, ondelete="CASCADE"), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "album_id", name="uq_like_user_album"),
)

movies = Table(
    "movies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_user_id", Integer, ForeignKey(users.c.id, ondelete="CASCADE"), nullable=False, index=True),
    Column("title", String(200), nullable=False),
    Column("genre", String(100), nullable=False),
    Column("release_date", String(10), nullable=False),  # YYYY-MM-DD
    Column("description", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

ratings = Table(
    "ratings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey(users.c.id, ondelete="CASCADE"), nullable=False),
    Column("movie_id", Integer, ForeignKey(movies.c.id, ondelete="CASCADE"), nullable=False, index=True),
    Column("value", Integer, nullable=False),  # 1..5
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "movie_id", name="uq_rating_user_movie"),
)

_ALBUM_FIELDS = frozenset({"title", "artist", "genre", "release_year"})
_MOVIE_FIELDS = frozenset({"title", "genre", "release_date", "description"})

# Sort keys accepted by list_albums(); anything else falls back to "date".
ALBUM_SORT_KEYS = {
    "title": albums.c.title,
    "artist": albums.c.artist,
    "genre": albums.c.genre,
    "year": albums.c.release_year,
    "date": albums.c.created_at,
}

_RECENT_MOVIES = 5


class CatalogStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Albums
    # ------------------------------------------------------------------

    def create_album(self, album: Album) -> int:
        """Insert a new album and return its assigned database ID."""
        now = now_iso()
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(
                albums.insert().values(
                    owner_user_id=album.owner_user_id,
                    title=album.title,
                    artist=album.artist,
                    genre=album.genre,
                    release_year=album.release_year,
                    created_at=now,
                    updated_at=now,
                )
            )
            album_id = result.inserted_primary_key[0]
        logger.info("Album created id=%d by user %d", album_id, album.owner_user_id)
        return album_id

    def get_album(self, album_id: int, viewer_id: Optional[int] = None) -> Optional[Album]:
        """Fetch a single album with its like aggregates. Returns None if not found."""
        stmt = self._album_query(viewer_id).where(albums.c.id == album_id)
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_album(row) if row is not None else None

    def update_album(self, album_id: int, **fields) -> bool:
        """Update content fields on an existing album.

        Accepts any subset of: title, artist, genre, release_year. Other keys
        (owner_user_id included) raise ValueError.

        Returns True if a row was updated, False if album_id was not found.
        """
        unknown = set(fields) - _ALBUM_FIELDS
        if unknown:
            raise ValueError(f"Cannot update album field(s): {', '.join(sorted(unknown))}")
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(
                albums.update().where(albums.c.id == album_id).values(updated_at=now_iso(), **fields)
            )
        return result.rowcount > 0

    def delete_album(self, album_id: int) -> bool:
        """Delete an album and, via cascade, its likes. Returns True if deleted."""
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(albums.delete().where(albums.c.id == album_id))
        return result.rowcount > 0

    def list_albums(
        self,
        sort: str = "date",
        direction: str = "desc",
        viewer_id: Optional[int] = None,
    ) -> list[Album]:
        """Return every album with like counts, ordered by sort/direction.

        sort is one of title|artist|genre|year|date and direction is asc|desc;
        unrecognised values fall back to date / desc.
        """
        column = ALBUM_SORT_KEYS.get((sort or "").lower(), albums.c.created_at)
        ascending = (direction or "").lower() == "asc"
        order = (column.asc(), albums.c.id.asc()) if ascending else (column.desc(), albums.c.id.desc())
        stmt = self._album_query(viewer_id).order_by(*order)
        with store_errors(), self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_album(r) for r in rows]

    def list_albums_by_owner(self, owner_user_id: int) -> list[Album]:
        """Return the albums owned by one user, newest first."""
        stmt = (
            self._album_query(owner_user_id)
            .where(albums.c.owner_user_id == owner_user_id)
            .order_by(albums.c.created_at.desc(), albums.c.id.desc())
        )
        with store_errors(), self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_album(r) for r in rows]

    def _album_query(self, viewer_id: Optional[int]):
        like_counts = (
            select(likes.c.album_id, func.count().label("like_count")).group_by(likes.c.album_id).subquery()
        )
        if viewer_id is None:
            liked = literal(False)
        else:
            liked = (
                select(likes.c.id)
                .where(likes.c.album_id == albums.c.id, likes.c.user_id == viewer_id)
                .correlate(albums)
                .exists()
            )
        return select(
            albums,
            func.coalesce(like_counts.c.like_count, 0).label("like_count"),
            liked.label("liked_by_me"),
        ).select_from(albums.outerjoin(like_counts, like_counts.c.album_id == albums.c.id))

    # ------------------------------------------------------------------
    # Likes
    # ------------------------------------------------------------------

    def like(self, user_id: int, album_id: int) -> bool:
        """Record a like. Returns True if new, False if the user already liked it.

        The caller must check that the album exists; a missing album also
        fails the insert and is indistinguishable from a duplicate here.
        """
        try:
            with store_errors(), self.engine.begin() as conn:
                conn.execute(likes.insert().values(user_id=user_id, album_id=album_id, created_at=now_iso()))
        except IntegrityError:
            return False
        return True

    def unlike(self, user_id: int, album_id: int) -> bool:
        """Remove a like. Returns True if one was removed."""
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(
                likes.delete().where(likes.c.user_id == user_id, likes.c.album_id == album_id)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Movies
    # ------------------------------------------------------------------

    def create_movie(self, movie: Movie) -> int:
        """Insert a new movie and return its assigned database ID."""
        now = now_iso()
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(
                movies.insert().values(
                    owner_user_id=movie.owner_user_id,
                    title=movie.title,
                    genre=movie.genre,
                    release_date=movie.release_date,
                    description=movie.description,
                    created_at=now,
                    updated_at=now,
                )
            )
            movie_id = result.inserted_primary_key[0]
        logger.info("Movie created id=%d by user %d", movie_id, movie.owner_user_id)
        return movie_id

    def get_movie(self, movie_id: int) -> Optional[Movie]:
        """Fetch a single movie with its rating aggregates. Returns None if not found."""
        stmt = self._movie_query().where(movies.c.id == movie_id)
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_movie(row) if row is not None else None

    def update_movie(self, movie_id: int, **fields) -> bool:
        """Update content fields on an existing movie.

        Accepts any subset of: title, genre, release_date, description.
        Returns True if a row was updated, False if movie_id was not found.
        """
        unknown = set(fields) - _MOVIE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update movie field(s): {', '.join(sorted(unknown))}")
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(
                movies.update().where(movies.c.id == movie_id).values(updated_at=now_iso(), **fields)
            )
        return result.rowcount > 0

    def delete_movie(self, movie_id: int) -> bool:
        """Delete a movie and, via cascade, its ratings. Returns True if deleted."""
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(movies.delete().where(movies.c.id == movie_id))
        return result.rowcount > 0

    def list_movies(self) -> list[Movie]:
        """Return every movie with rating counts and averages, newest first."""
        stmt = self._movie_query().order_by(movies.c.created_at.desc(), movies.c.id.desc())
        with store_errors(), self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_movie(r) for r in rows]

    def _movie_query(self):
        return (
            select(
                movies,
                func.count(ratings.c.id).label("rating_count"),
                func.avg(ratings.c.value).label("average_rating"),
            )
            .select_from(movies.outerjoin(ratings, ratings.c.movie_id == movies.c.id))
            .group_by(movies.c.id)
        )

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def get_movie_ratings(self, movie_id: int) -> list[Rating]:
        """Return every rating for a movie, oldest first."""
        with store_errors(), self.engine.connect() as conn:
            rows = conn.execute(
                ratings.select().where(ratings.c.movie_id == movie_id).order_by(ratings.c.id)
            ).fetchall()
        return [_row_to_rating(r) for r in rows]

    def has_rated(self, user_id: int, movie_id: int) -> bool:
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(
                select(ratings.c.id).where(ratings.c.user_id == user_id, ratings.c.movie_id == movie_id)
            ).fetchone()
        return row is not None

    def add_rating(self, rating: Rating) -> int:
        """Insert a rating and return its ID.

        Raises UniquenessViolation if the user has already rated this movie.
        """
        try:
            with store_errors(), self.engine.begin() as conn:
                result = conn.execute(
                    ratings.insert().values(
                        user_id=rating.user_id,
                        movie_id=rating.movie_id,
                        value=rating.value,
                        created_at=now_iso(),
                    )
                )
                rating_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise UniquenessViolation(("movie_id",)) from exc
        logger.info(
            "Rating added movieId=%d by user %d value=%d", rating.movie_id, rating.user_id, rating.value
        )
        return rating_id

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def profile_summary(self, user_id: int) -> ProfileSummary:
        """Return owned movie/album counts, ratings given, and the latest movies."""
        with store_errors(), self.engine.connect() as conn:
            movie_count = conn.execute(
                select(func.count()).select_from(movies).where(movies.c.owner_user_id == user_id)
            ).scalar()
            album_count = conn.execute(
                select(func.count()).select_from(albums).where(albums.c.owner_user_id == user_id)
            ).scalar()
            rating_count = conn.execute(
                select(func.count()).select_from(ratings).where(ratings.c.user_id == user_id)
            ).scalar()
            recent = conn.execute(
                self._movie_query()
                .where(movies.c.owner_user_id == user_id)
                .order_by(movies.c.created_at.desc(), movies.c.id.desc())
                .limit(_RECENT_MOVIES)
            ).fetchall()
        return ProfileSummary(
            movie_count=movie_count or 0,
            album_count=album_count or 0,
            rating_count=rating_count or 0,
            recent_movies=[_row_to_movie(r) for r in recent],
        )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_album(row) -> Album:
    return Album(
        id=row.id,
        owner_user_id=row.owner_user_id,
        title=row.title,
        artist=row.artist,
        genre=row.genre,
        release_year=row.release_year,
        created_at=row.created_at,
        updated_at=row.updated_at,
        like_count=row.like_count or 0,
        liked_by_me=bool(row.liked_by_me),
    )


def _row_to_movie(row) -> Movie:
    return Movie(
        id=row.id,
        owner_user_id=row.owner_user_id,
        title=row.title,
        genre=row.genre,
        release_date=row.release_date,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
        rating_count=row.rating_count or 0,
        average_rating=float(row.average_rating) if row.average_rating is not None else None,
    )


def _row_to_rating(row) -> Rating:
    return Rating(
        id=row.id,
        user_id=row.user_id,
        movie_id=row.movie_id,
        value=row.value,
        created_at=row.created_at,
    )
