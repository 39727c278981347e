"""
api/main.py -- FastAPI application entry point for VinylRewind.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- one log line per request with latency
  5. session_middleware    -- SessionContext on request.state, cookie sync

Lifespan builds one Engine, creates the schema, wires every store and auth
component onto app.state, and starts the expired-session purge task.
Shutdown cancels the task and disposes the engine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldErrorModel, HealthResponse
from api.routes.v1.albums import router as albums_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.movies import router as movies_router
from auth.credentials import CredentialVerifier
from auth.dependencies import AuthRequired, session_middleware
from auth.passwords import PasswordHasher
from auth.registration import RegistrationFlow, RegistrationRules
from auth.sessions import AuthSessionManager, SqlSessionStore
from auth.store import UserStore
from catalog.store import CatalogStore
from core.config import get_settings
from core.db import create_db_engine, create_schema
from core.errors import StoreUnavailable

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("vinylrewind.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_components(app: FastAPI, engine) -> None:
    """Build every store and auth component over engine and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both wire the same graph.
    """
    settings = get_settings()
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.catalog = CatalogStore(engine)
    app.state.hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    app.state.session_manager = AuthSessionManager(
        SqlSessionStore(engine, settings.secret_key),
        idle_seconds=settings.session_idle_seconds,
        absolute_seconds=settings.session_absolute_seconds,
    )
    app.state.verifier = CredentialVerifier(app.state.user_store, app.state.hasher)
    app.state.registration = RegistrationFlow(
        app.state.user_store,
        app.state.hasher,
        app.state.session_manager,
        RegistrationRules(
            username_min_length=settings.username_min_length,
            username_max_length=settings.username_max_length,
            password_min_length=settings.password_min_length,
        ),
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired session rows every interval seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. A store outage is logged
    and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await run_in_threadpool(app.state.session_manager.purge_expired)
        except StoreUnavailable as exc:
            logger.warning("Session purge skipped: %s", exc)
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the engine and schema, wire components, start the purge task."""
    settings = get_settings()
    logger.info("VinylRewind API starting up")
    engine = create_db_engine(settings.database_url)
    create_schema(engine)
    wire_components(app, engine)
    logger.info("Database ready (%d users)", app.state.user_store.count_users())
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    engine.dispose()
    logger.info("VinylRewind API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="VinylRewind API",
    description="Albums with likes and movies with ratings, behind session-based login.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette makes the LAST middleware added the OUTERMOST, so registration
# order here is innermost-first: session_middleware sees the request last and
# TrustedHostMiddleware sees it first.
# ---------------------------------------------------------------------------

app.middleware("http")(session_middleware)


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


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(albums_router, prefix="/api/v1", tags=["Albums"])
app.include_router(movies_router, prefix="/api/v1", tags=["Movies"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, **extra)).model_dump(),
    )


@app.exception_handler(AuthRequired)
async def auth_required_handler(request: Request, exc: AuthRequired):
    """401 for API clients; 303 to the login page for browsers."""
    if "text/html" in request.headers.get("accept", ""):
        return RedirectResponse(f"/login?next={quote(exc.next_path, safe='/')}", status_code=303)
    return _error(401, "unauthenticated", "Authentication required.")


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """503 when the database cannot be reached. Driver detail stays in the log."""
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return _error(503, "service_unavailable", "The service is temporarily unavailable. Please try again.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", detail=str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 listing every invalid field, in the same shape registration uses."""
    fields = [
        FieldErrorModel(
            field=str(err["loc"][-1]) if err.get("loc") else "body",
            message=err.get("msg", "Invalid value."),
        )
        for err in exc.errors()
    ]
    return _error(422, "validation_error", "Request validation failed.", fields=fields)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only; the client receives a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit and no auth: load balancers must not be throttled.
# ---------------------------------------------------------------------------


def _database_ok(engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Health check: database unreachable: %s", exc)
        return False
    return True


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> JSONResponse:
    """Report liveness and database reachability. 503 when the database is down."""
    db_ok = _database_ok(request.app.state.engine)
    body = HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
