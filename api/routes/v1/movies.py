"""
api/routes/v1/movies.py -- Movie catalogue and ratings REST endpoints.

Routes:
  GET    /api/v1/movies                -- all movies with rating averages
  POST   /api/v1/movies                -- create; caller becomes owner (requires auth)
  GET    /api/v1/movies/{id}           -- single movie with its ratings
  PATCH  /api/v1/movies/{id}           -- update (owner only)
  DELETE /api/v1/movies/{id}           -- delete (owner only)
  POST   /api/v1/movies/{id}/ratings   -- rate 1-5, once per user (requires auth)

Read access follows MOVIES_READ_REQUIRES_LOGIN (login required by default).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    MovieCreate,
    MovieDetailResponse,
    MoviePatch,
    MovieResponse,
    RatingCreate,
    RatingResponse,
)
from auth.dependencies import current_user_id, enforce, require_user_id
from auth.guard import LOGIN_TO_READ, PUBLIC_READ, AccessPolicy, authorize
from auth.models import Action
from catalog.models import Movie, Rating
from catalog.store import CatalogStore
from core.config import get_settings
from core.errors import UniquenessViolation

logger = logging.getLogger("vinylrewind.api")

router = APIRouter()


def _policy() -> AccessPolicy:
    return LOGIN_TO_READ if get_settings().movies_read_requires_login else PUBLIC_READ


def _load(catalog: CatalogStore, movie_id: int) -> Movie:
    movie = catalog.get_movie(movie_id)
    if movie is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Movie {movie_id} not found."},
        )
    return movie


@router.get("/movies", response_model=list[MovieResponse])
def list_movies(request: Request) -> list[MovieResponse]:
    viewer_id = current_user_id(request)
    enforce(authorize(viewer_id, None, Action.read, _policy()), request)
    catalog: CatalogStore = request.app.state.catalog
    return [MovieResponse.from_movie(m) for m in catalog.list_movies()]


@router.post("/movies", response_model=MovieResponse, status_code=201)
def create_movie(request: Request, body: MovieCreate) -> MovieResponse:
    user_id = current_user_id(request)
    enforce(authorize(user_id, None, Action.write), request)
    catalog: CatalogStore = request.app.state.catalog
    movie_id = catalog.create_movie(
        Movie(
            owner_user_id=user_id,
            title=body.title,
            genre=body.genre,
            release_date=body.release_date.isoformat(),
            description=body.description,
        )
    )
    return MovieResponse.from_movie(_load(catalog, movie_id))


@router.get("/movies/{movie_id}", response_model=MovieDetailResponse)
def get_movie(request: Request, movie_id: int) -> MovieDetailResponse:
    """Movie detail with every rating and whether the caller has rated it."""
    viewer_id = current_user_id(request)
    enforce(authorize(viewer_id, None, Action.read, _policy()), request)
    catalog: CatalogStore = request.app.state.catalog
    movie = _load(catalog, movie_id)
    ratings = catalog.get_movie_ratings(movie_id)
    return MovieDetailResponse(
        **MovieResponse.from_movie(movie).model_dump(),
        ratings=[RatingResponse.from_rating(r) for r in ratings],
        has_rated=viewer_id is not None and catalog.has_rated(viewer_id, movie_id),
    )


@router.patch("/movies/{movie_id}", response_model=MovieResponse)
def update_movie(
    request: Request, movie_id: int, body: MoviePatch, user_id: int = Depends(require_user_id)
) -> MovieResponse:
    catalog: CatalogStore = request.app.state.catalog
    movie = _load(catalog, movie_id)
    enforce(authorize(user_id, movie, Action.write), request)

    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    if "release_date" in updates:
        updates["release_date"] = updates["release_date"].isoformat()
    catalog.update_movie(movie_id, **updates)
    logger.info("Movie updated id=%d by user %d", movie_id, user_id)
    return MovieResponse.from_movie(_load(catalog, movie_id))


@router.delete("/movies/{movie_id}", status_code=204)
def delete_movie(request: Request, movie_id: int, user_id: int = Depends(require_user_id)) -> Response:
    catalog: CatalogStore = request.app.state.catalog
    movie = _load(catalog, movie_id)
    enforce(authorize(user_id, movie, Action.delete), request)
    catalog.delete_movie(movie_id)
    logger.info("Movie deleted id=%d by user %d", movie_id, user_id)
    return Response(status_code=204)


@router.post("/movies/{movie_id}/ratings", response_model=RatingResponse, status_code=201)
def rate_movie(
    request: Request,
    movie_id: int,
    body: RatingCreate,
    user_id: int = Depends(require_user_id),
) -> RatingResponse:
    """Rate a movie. Ratings are final: a second attempt returns 409."""
    catalog: CatalogStore = request.app.state.catalog
    _load(catalog, movie_id)
    try:
        rating_id = catalog.add_rating(Rating(user_id=user_id, movie_id=movie_id, value=body.value))
    except UniquenessViolation as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "already_rated", "message": "You have already rated this movie."},
        ) from exc
    rating = next(r for r in catalog.get_movie_ratings(movie_id) if r.id == rating_id)
    return RatingResponse.from_rating(rating)
