"""
auth/dependencies.py -- FastAPI glue between requests and the auth core.

session_middleware runs on every request:
  1. Builds a SessionContext from the session cookie.
  2. Calls AuthSessionManager.ensure() in a worker thread, so every client
     holds a live (possibly anonymous) session before any route runs.
  3. After the route returns, writes Set-Cookie when an id was issued or
     rotated, or deletes the cookie when the session was cleared.

Route helpers:
  try_get_current_user() -- soft variant, returns None for anonymous clients.
  current_user_id()      -- same, but only the id (no user lookup).
  require_user_id()      -- Depends() helper; raises AuthRequired if anonymous.
  enforce()              -- turns a guard Decision into AuthRequired / HTTP 403.

AuthRequired is rendered by api/main.py: HTTP 401 for API clients, or a 303
redirect to /login?next=<path> for browsers.

Layer rule: no imports from api/ or catalog/.
  auth/dependencies.py may import from fastapi/starlette because this module is
  part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from auth.models import Decision, SessionContext, User
from auth.sessions import AuthSessionManager
from core.config import Settings, get_settings
from core.errors import StoreUnavailable

logger = logging.getLogger("vinylrewind.auth")


class AuthRequired(Exception):
    """Raised when an anonymous client attempts something that needs a login."""

    def __init__(self, next_path: str = "/") -> None:
        super().__init__("Authentication required.")
        self.next_path = safe_next(next_path)


def safe_next(path: str | None) -> str:
    """Return path if it is a same-site relative path, else "/".

    Rejects absolute URLs and protocol-relative paths ("//evil.example") so a
    post-login redirect can never leave the site.
    """
    if not path or not path.startswith("/") or path.startswith("//") or "\\" in path:
        return "/"
    return path


# ---------------------------------------------------------------------------
# Session middleware
# ---------------------------------------------------------------------------


def apply_session_cookie(response: Response, ctx: SessionContext, settings: Settings) -> None:
    """Emit the Set-Cookie header matching what the manager did to ctx."""
    if ctx.cleared:
        response.delete_cookie(
            settings.session_cookie_name,
            path="/",
            httponly=True,
            samesite="lax",
            secure=settings.secure_cookies,
        )
    elif ctx.issued and ctx.session_id:
        response.set_cookie(
            key=settings.session_cookie_name,
            value=ctx.session_id,
            max_age=settings.session_absolute_seconds,
            path="/",
            httponly=True,  # not readable by JavaScript
            samesite="lax",  # not sent on cross-site POSTs
            secure=settings.secure_cookies,
        )


async def session_middleware(request: Request, call_next):
    """Attach a SessionContext to request.state and sync the cookie afterwards.

    If the session store is unreachable the request continues anonymously;
    any route that then touches the store fails with 503 through the normal
    StoreUnavailable handler, while /api/v1/health can still report the outage.
    """
    settings = get_settings()
    manager: AuthSessionManager = request.app.state.session_manager
    ctx = SessionContext(session_id=request.cookies.get(settings.session_cookie_name))
    try:
        await run_in_threadpool(manager.ensure, ctx)
    except StoreUnavailable as exc:
        logger.warning("Session store unavailable, continuing anonymously: %s", exc)
        ctx = SessionContext()
    request.state.session = ctx

    response = await call_next(request)
    apply_session_cookie(response, ctx, settings)
    return response


# ---------------------------------------------------------------------------
# Route helpers
# ---------------------------------------------------------------------------


def get_session(request: Request) -> SessionContext:
    ctx = getattr(request.state, "session", None)
    if ctx is None:
        ctx = SessionContext()
        request.state.session = ctx
    return ctx


def current_user_id(request: Request) -> int | None:
    """Return the authenticated user's id, or None for anonymous clients."""
    manager: AuthSessionManager = request.app.state.session_manager
    return manager.resolve_current_user(get_session(request))


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None.

    A session bound to a user that no longer exists resolves to None.
    """
    user_id = current_user_id(request)
    if user_id is None:
        return None
    return request.app.state.user_store.get_by_id(user_id)


def require_user_id(request: Request) -> int:
    """Require authentication. Raises AuthRequired if the client is anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user_id: int = Depends(require_user_id)): ...
    """
    user_id = current_user_id(request)
    if user_id is None:
        raise AuthRequired(request.url.path)
    return user_id


def enforce(decision: Decision, request: Request) -> None:
    """Translate a guard decision into the matching HTTP outcome."""
    if decision is Decision.allow:
        return
    if decision is Decision.deny_unauthenticated:
        raise AuthRequired(request.url.path)
    logger.warning("Forbidden %s %s", request.method, request.url.path)
    raise HTTPException(
        status_code=403,
        detail={"code": "forbidden", "message": "You do not have permission to modify this resource."},
    )
