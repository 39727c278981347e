"""
auth/sessions.py -- Server-side sessions and the authenticated-session lifecycle.

Two pieces live here:

  SessionStore / SqlSessionStore -- the key-value collaborator. Records are
      keyed by HMAC-SHA256(SECRET_KEY, session_id): the raw id only ever
      exists in the client's cookie and in memory for the current request,
      so a leaked sessions table cannot be replayed as cookies.

  AuthSessionManager -- the only component allowed to mutate sessions.
      State machine per client:

          Anonymous --establish--> Authenticated --clear / expiry--> Anonymous

      establish() always moves the record to a fresh id (session fixation
      mitigation). clear() deletes the record outright; the client receives a
      brand-new anonymous session on its next request. Expiry is checked on
      every read: a record idle for longer than idle_seconds, or older than
      absolute_seconds, is deleted and resolves to anonymous.

The manager holds no per-client state. Every call takes an explicit
SessionContext and reads/writes the store, so concurrent requests only share
the database.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy import Column, ForeignKey, Integer, String, Table, or_
from sqlalchemy.engine import Engine

from auth.models import SessionContext, SessionRecord
from auth.store import users
from core.db import metadata, store_errors

logger = logging.getLogger("vinylrewind.auth.sessions")

# Refresh last_seen_at at most this often to avoid a write on every request.
_TOUCH_INTERVAL = timedelta(seconds=60)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

sessions = Table(
    "sessions",
    metadata,
    Column("key_hash", String(64), primary_key=True),  # HMAC-SHA256 hex of the session id
    Column("user_id", Integer, ForeignKey(users.c.id, ondelete="CASCADE"), nullable=True),
    Column("created_at", String(32), nullable=False),
    Column("last_seen_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),  # absolute expiry
)


def new_session_id() -> str:
    """Return an unguessable session id (256 bits of entropy, URL-safe)."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SessionStore(Protocol):
    def get(self, session_id: str) -> SessionRecord | None: ...

    def put(self, session_id: str, record: SessionRecord) -> None: ...

    def delete(self, session_id: str) -> None: ...

    def rotate_id(self, old_id: str) -> str | None: ...

    def purge_expired(self, now_iso: str, idle_cutoff_iso: str) -> int: ...


class SqlSessionStore:
    """SessionStore backed by the sessions table."""

    def __init__(self, engine: Engine, secret_key: str) -> None:
        self.engine = engine
        self._secret = secret_key.encode("utf-8")

    def _key(self, session_id: str) -> str:
        return hmac.new(self._secret, session_id.encode("utf-8"), hashlib.sha256).hexdigest()

    def get(self, session_id: str) -> SessionRecord | None:
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.key_hash == self._key(session_id))).fetchone()
        if row is None:
            return None
        return SessionRecord(
            user_id=row.user_id,
            created_at=row.created_at,
            last_seen_at=row.last_seen_at,
            expires_at=row.expires_at,
        )

    def put(self, session_id: str, record: SessionRecord) -> None:
        """Insert or replace the record stored under session_id."""
        key = self._key(session_id)
        values = {
            "user_id": record.user_id,
            "created_at": record.created_at,
            "last_seen_at": record.last_seen_at,
            "expires_at": record.expires_at,
        }
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(sessions.update().where(sessions.c.key_hash == key).values(**values))
            if result.rowcount == 0:
                conn.execute(sessions.insert().values(key_hash=key, **values))

    def delete(self, session_id: str) -> None:
        with store_errors(), self.engine.begin() as conn:
            conn.execute(sessions.delete().where(sessions.c.key_hash == self._key(session_id)))

    def rotate_id(self, old_id: str) -> str | None:
        """Move the record under old_id to a freshly generated id.

        Returns the new id, or None if old_id has no record. The old id stops
        resolving the moment this returns.
        """
        new_id = new_session_id()
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(
                sessions.update().where(sessions.c.key_hash == self._key(old_id)).values(key_hash=self._key(new_id))
            )
        return new_id if result.rowcount > 0 else None

    def purge_expired(self, now_iso: str, idle_cutoff_iso: str) -> int:
        """Delete records past their absolute expiry or last seen before idle_cutoff_iso.

        Returns rows removed.
        """
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(
                sessions.delete().where(
                    or_(sessions.c.expires_at < now_iso, sessions.c.last_seen_at < idle_cutoff_iso)
                )
            )
        return result.rowcount


# ---------------------------------------------------------------------------
# Auth session manager
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse(ts: str) -> datetime:
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class AuthSessionManager:
    """Establishes, resolves, and tears down authenticated sessions.

    Usage (one SessionContext per request):
        ctx = SessionContext(session_id=request.cookies.get("sid"))
        manager.ensure(ctx)                 # anonymous session for new clients
        manager.establish(ctx, user.id)     # after login / registration
        manager.resolve_current_user(ctx)   # -> user id or None
        manager.clear(ctx)                  # logout
    """

    def __init__(
        self,
        store: SessionStore,
        idle_seconds: int = 1800,
        absolute_seconds: int = 8 * 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.idle = timedelta(seconds=idle_seconds)
        self.absolute = timedelta(seconds=absolute_seconds)
        self._clock = clock

    def ensure(self, ctx: SessionContext) -> int | None:
        """Make sure ctx refers to a live session, issuing an anonymous one if not.

        Returns the bound user id, if any.
        """
        record = self._load(ctx)
        if record is not None:
            return record.user_id
        self._issue(ctx, user_id=None)
        return None

    def establish(self, ctx: SessionContext, user_id: int) -> None:
        """Bind user_id to the client's session under a newly generated id."""
        new_id = self.store.rotate_id(ctx.session_id) if ctx.session_id else None
        if new_id is None:
            new_id = new_session_id()
        self.store.put(new_id, self._fresh_record(user_id))
        ctx.session_id = new_id
        ctx.issued = True
        ctx.cleared = False
        logger.info("Session established for user %d", user_id)

    def resolve_current_user(self, ctx: SessionContext) -> int | None:
        """Return the user id bound to ctx, or None for anonymous/expired/unknown sessions."""
        record = self._load(ctx)
        return record.user_id if record is not None else None

    def clear(self, ctx: SessionContext) -> None:
        """Invalidate the session completely. The next request starts anonymous."""
        if ctx.session_id:
            self.store.delete(ctx.session_id)
        ctx.session_id = None
        ctx.issued = False
        ctx.cleared = True

    def purge_expired(self) -> int:
        """Delete every idle-expired or absolutely expired session. Returns rows removed."""
        now = self._clock()
        return self.store.purge_expired(now.isoformat(), (now - self.idle).isoformat())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fresh_record(self, user_id: int | None) -> SessionRecord:
        now = self._clock()
        return SessionRecord(
            user_id=user_id,
            created_at=now.isoformat(),
            last_seen_at=now.isoformat(),
            expires_at=(now + self.absolute).isoformat(),
        )

    def _issue(self, ctx: SessionContext, user_id: int | None) -> None:
        session_id = new_session_id()
        self.store.put(session_id, self._fresh_record(user_id))
        ctx.session_id = session_id
        ctx.issued = True
        ctx.cleared = False

    def _load(self, ctx: SessionContext) -> SessionRecord | None:
        """Fetch the live record for ctx, deleting it if expired."""
        if not ctx.session_id:
            return None
        record = self.store.get(ctx.session_id)
        if record is None:
            return None
        now = self._clock()
        last_seen = _parse(record.last_seen_at)
        if now >= _parse(record.expires_at) or now - last_seen >= self.idle:
            self.store.delete(ctx.session_id)
            if record.user_id is not None:
                logger.info("Session for user %d expired", record.user_id)
            return None
        if now - last_seen >= _TOUCH_INTERVAL:
            record.last_seen_at = now.isoformat()
            self.store.put(ctx.session_id, record)
        return record
