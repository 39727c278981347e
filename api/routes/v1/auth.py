"""
api/routes/v1/auth.py -- Registration, login, logout, and account endpoints.

Routes:
  POST /api/v1/auth/register  -- create account, log in immediately; 201
  POST /api/v1/auth/login     -- username or email + password; 200
  POST /api/v1/auth/logout    -- destroy the session; 200
  GET  /api/v1/auth/me        -- current user identity (requires auth)
  GET  /api/v1/auth/profile   -- owned counts + recent movies (requires auth)

Security:
  POST /login and POST /register are rate-limited per client address.
  CredentialVerifier provides timing equalization -- use it, never inline a
      lookup + bcrypt check here.
  Wrong identifier and wrong password share one response ("bad_credentials").
  Cache-Control: no-store on every response that carries credentials outcome.
  Session ids are rotated by AuthSessionManager.establish() on login and on
      registration; the session middleware emits the new cookie.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, register_limit
from api.models import (
    ErrorDetail,
    ErrorResponse,
    FieldErrorModel,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    MovieResponse,
    ProfileResponse,
    RegisterRequest,
)
from auth.credentials import CredentialVerifier
from auth.dependencies import AuthRequired, get_session, try_get_current_user
from auth.registration import RegistrationFlow
from auth.sessions import AuthSessionManager
from catalog.store import CatalogStore

logger = logging.getLogger("vinylrewind.api")

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/logout:   public -- clearing an anonymous session is harmless
# - GET  /api/v1/auth/me:       requires auth
# - GET  /api/v1/auth/profile:  requires auth
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=MeResponse, status_code=201)
@limiter.limit(register_limit)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and log the new user in.

    422 lists every structural problem at once; 409 lists the fields that are
    already taken. Nothing is persisted in either case.
    """
    flow: RegistrationFlow = request.app.state.registration
    result = flow.register(
        get_session(request),
        body.username,
        body.email,
        body.password,
        body.confirm_password,
    )
    if not result.ok:
        status, code, message = (
            (409, "conflict", "Username or email already in use.")
            if result.conflict
            else (422, "validation_error", "Registration details are invalid.")
        )
        return _no_store(
            JSONResponse(
                status_code=status,
                content=ErrorResponse(
                    error=ErrorDetail(
                        code=code,
                        message=message,
                        fields=[FieldErrorModel.from_field_error(e) for e in result.errors],
                    )
                ).model_dump(),
            )
        )

    user = request.app.state.user_store.get_by_id(result.user_id)
    return _no_store(
        JSONResponse(
            status_code=201,
            content=MeResponse(user_id=user.id, username=user.username, email=user.email).model_dump(),
        )
    )


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_limit)  # brute-force mitigation
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with a username or email address plus password."""
    verifier: CredentialVerifier = request.app.state.verifier
    result = verifier.verify(body.identifier, body.password)
    if not result.ok:
        return _no_store(
            JSONResponse(
                status_code=401,
                content=ErrorResponse(
                    error=ErrorDetail(code="bad_credentials", message="Invalid username/email or password.")
                ).model_dump(),
            )
        )

    manager: AuthSessionManager = request.app.state.session_manager
    manager.establish(get_session(request), result.user_id)
    user = request.app.state.user_store.get_by_id(result.user_id)
    return _no_store(
        JSONResponse(
            status_code=200,
            content=LoginResponse(user_id=user.id, username=user.username).model_dump(),
        )
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    """End the session. The client gets a fresh anonymous session next time."""
    manager: AuthSessionManager = request.app.state.session_manager
    ctx = get_session(request)
    user_id = manager.resolve_current_user(ctx)
    manager.clear(ctx)
    if user_id is not None:
        logger.info("User %d logged out", user_id)
    return MessageResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    user = try_get_current_user(request)
    if user is None:
        raise AuthRequired(request.url.path)
    return MeResponse(user_id=user.id, username=user.username, email=user.email)


@router.get("/auth/profile", response_model=ProfileResponse)
def profile(request: Request) -> ProfileResponse:
    """Counts of owned movies and albums, ratings given, and the five latest movies."""
    user = try_get_current_user(request)
    if user is None:
        raise AuthRequired(request.url.path)
    catalog: CatalogStore = request.app.state.catalog
    summary = catalog.profile_summary(user.id)
    return ProfileResponse(
        user_id=user.id,
        username=user.username,
        email=user.email,
        member_since=user.created_at or "",
        movie_count=summary.movie_count,
        album_count=summary.album_count,
        rating_count=summary.rating_count,
        recent_movies=[MovieResponse.from_movie(m) for m in summary.recent_movies],
    )
