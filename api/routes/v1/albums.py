"""
api/routes/v1/albums.py -- Album collection and likes REST endpoints.

Routes:
  GET    /api/v1/albums                -- all albums, sortable; like counts
  GET    /api/v1/albums/mine           -- albums owned by the caller (requires auth)
  POST   /api/v1/albums                -- create; caller becomes owner (requires auth)
  GET    /api/v1/albums/{id}           -- single album
  PATCH  /api/v1/albums/{id}           -- update (owner only)
  DELETE /api/v1/albums/{id}           -- delete (owner only)
  POST   /api/v1/albums/{id}/like      -- like (requires auth, idempotent)
  DELETE /api/v1/albums/{id}/like      -- unlike (requires auth, idempotent)

Every mutation goes through auth.guard.authorize() followed by enforce(), so
the ownership rule lives in exactly one place. Read access follows
ALBUMS_READ_REQUIRES_LOGIN (public by default).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.models import AlbumCreate, AlbumPatch, AlbumResponse, LikeResponse
from auth.dependencies import current_user_id, enforce, require_user_id
from auth.guard import LOGIN_TO_READ, PUBLIC_READ, AccessPolicy, authorize
from auth.models import Action
from catalog.models import Album
from catalog.store import CatalogStore
from core.config import get_settings

logger = logging.getLogger("vinylrewind.api")

router = APIRouter()


def _policy() -> AccessPolicy:
    return LOGIN_TO_READ if get_settings().albums_read_requires_login else PUBLIC_READ


def _load(catalog: CatalogStore, album_id: int, viewer_id: int | None = None) -> Album:
    album = catalog.get_album(album_id, viewer_id)
    if album is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Album {album_id} not found."},
        )
    return album


@router.get("/albums", response_model=list[AlbumResponse])
def list_albums(
    request: Request,
    sort: str = Query(default="date", max_length=10, description="title | artist | genre | year | date"),
    dir: str = Query(default="desc", max_length=4, description="asc | desc"),
) -> list[AlbumResponse]:
    """List every album with like counts. Unknown sort keys fall back to date/desc."""
    viewer_id = current_user_id(request)
    enforce(authorize(viewer_id, None, Action.read, _policy()), request)
    catalog: CatalogStore = request.app.state.catalog
    return [AlbumResponse.from_album(a) for a in catalog.list_albums(sort, dir, viewer_id)]


@router.get("/albums/mine", response_model=list[AlbumResponse])
def my_albums(request: Request, user_id: int = Depends(require_user_id)) -> list[AlbumResponse]:
    catalog: CatalogStore = request.app.state.catalog
    return [AlbumResponse.from_album(a) for a in catalog.list_albums_by_owner(user_id)]


@router.post("/albums", response_model=AlbumResponse, status_code=201)
def create_album(request: Request, body: AlbumCreate) -> AlbumResponse:
    user_id = current_user_id(request)
    enforce(authorize(user_id, None, Action.write), request)
    catalog: CatalogStore = request.app.state.catalog
    album_id = catalog.create_album(
        Album(
            owner_user_id=user_id,
            title=body.title,
            artist=body.artist,
            genre=body.genre or None,
            release_year=body.release_year,
        )
    )
    return AlbumResponse.from_album(_load(catalog, album_id, user_id))


@router.get("/albums/{album_id}", response_model=AlbumResponse)
def get_album(request: Request, album_id: int) -> AlbumResponse:
    viewer_id = current_user_id(request)
    catalog: CatalogStore = request.app.state.catalog
    album = _load(catalog, album_id, viewer_id)
    enforce(authorize(viewer_id, album, Action.read, _policy()), request)
    return AlbumResponse.from_album(album)


@router.patch("/albums/{album_id}", response_model=AlbumResponse)
def update_album(
    request: Request, album_id: int, body: AlbumPatch, user_id: int = Depends(require_user_id)
) -> AlbumResponse:
    """Update an album. Only the owner may do this; owner_user_id never changes."""
    catalog: CatalogStore = request.app.state.catalog
    album = _load(catalog, album_id, user_id)
    enforce(authorize(user_id, album, Action.write), request)

    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    catalog.update_album(album_id, **updates)
    logger.info("Album updated id=%d by user %d", album_id, user_id)
    return AlbumResponse.from_album(_load(catalog, album_id, user_id))


@router.delete("/albums/{album_id}", status_code=204)
def delete_album(request: Request, album_id: int, user_id: int = Depends(require_user_id)) -> Response:
    catalog: CatalogStore = request.app.state.catalog
    album = _load(catalog, album_id, user_id)
    enforce(authorize(user_id, album, Action.delete), request)
    catalog.delete_album(album_id)
    logger.info("Album deleted id=%d by user %d", album_id, user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Likes -- any authenticated user, on any album
# ---------------------------------------------------------------------------


@router.post("/albums/{album_id}/like", response_model=LikeResponse)
def like_album(request: Request, album_id: int, user_id: int = Depends(require_user_id)) -> LikeResponse:
    catalog: CatalogStore = request.app.state.catalog
    _load(catalog, album_id)
    catalog.like(user_id, album_id)
    album = _load(catalog, album_id, user_id)
    return LikeResponse(album_id=album_id, liked=album.liked_by_me, like_count=album.like_count)


@router.delete("/albums/{album_id}/like", response_model=LikeResponse)
def unlike_album(request: Request, album_id: int, user_id: int = Depends(require_user_id)) -> LikeResponse:
    catalog: CatalogStore = request.app.state.catalog
    _load(catalog, album_id)
    catalog.unlike(user_id, album_id)
    album = _load(catalog, album_id, user_id)
    return LikeResponse(album_id=album_id, liked=album.liked_by_me, like_count=album.like_count)
