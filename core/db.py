"""
core/db.py -- Engine factory and shared schema metadata.

Every store (auth/store.py, auth/sessions.py, catalog/store.py) declares its
tables on the single `metadata` below so foreign keys between users, sessions,
albums, likes, movies, and ratings resolve in one create_all() call.

SQLite specifics:
  check_same_thread=False -- FastAPI runs sync handlers in a thread pool, so a
      pooled connection may be used by a different thread than the one that
      opened it.
  WAL journal mode -- readers proceed without blocking during writes.
  foreign_keys=ON -- SQLite ignores FK constraints (including ON DELETE
      CASCADE) unless this PRAGMA is set on every connection.

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from core.errors import StoreUnavailable

metadata = MetaData()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on each new SQLite connection.

    PRAGMAs are per-connection in SQLite and are not inherited from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Create an Engine for db_url with the SQLite connection settings applied."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def create_schema(engine: Engine) -> None:
    """Create all registered tables. Idempotent.

    Only tables whose modules have been imported are registered on metadata;
    api/main.py imports every store before calling this.
    """
    with store_errors():
        metadata.create_all(engine)


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate driver-level failures into StoreUnavailable.

    IntegrityError is re-raised untouched: stores catch it themselves and turn
    it into UniquenessViolation with the field names they know about.
    """
    try:
        yield
    except IntegrityError:
        raise
    except (OperationalError, DBAPIError) as exc:
        raise StoreUnavailable(str(exc.orig) if exc.orig is not None else str(exc)) from exc


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
