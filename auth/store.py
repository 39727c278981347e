"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and flow code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  username and email each carry a UNIQUE constraint. The registration flow
  pre-checks both to produce friendly messages, but the constraint is the
  authoritative guard: two concurrent registrations can both pass the
  pre-check, and the loser's INSERT fails here. insert_user() turns that
  IntegrityError into UniquenessViolation naming the conflicting field(s).

Deletion:
  delete_user() is an administrative operation. Every table that references
  users.id declares ON DELETE CASCADE, so the user's sessions, albums, likes,
  movies, and ratings disappear with the row.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, String, Table, Text, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from core.db import metadata, now_iso, store_errors
from core.errors import UniquenessViolation

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(engine)
        uid = store.insert_user(User(username="alice", email="alice@example.com", password_hash=h))
        user = store.find_by_identifier("alice")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find_by_identifier(self, identifier: str) -> User | None:
        """Look up a user whose username or email equals identifier.

        identifier must already be normalized. Usernames cannot contain "@",
        so at most one row can match.
        """
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(
                users.select().where(or_(users.c.username == identifier, users.c.email == identifier))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def username_exists(self, username: str) -> bool:
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.username == username)).fetchone()
        return row is not None

    def email_exists(self, email: str) -> bool:
        with store_errors(), self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.email == email)).fetchone()
        return row is not None

    def insert_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises UniquenessViolation if the username or email is already taken.
        """
        now = now_iso()
        try:
            with store_errors(), self.engine.begin() as conn:
                result = conn.execute(
                    users.insert().values(
                        username=user.username,
                        email=user.email,
                        password_hash=user.password_hash,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise UniquenessViolation(self._conflicting_fields(user)) from exc

    def _conflicting_fields(self, user: User) -> tuple[str, ...]:
        """Work out which unique column rejected the insert.

        Driver error messages differ between SQLite and PostgreSQL, so the
        store re-queries instead of parsing them.
        """
        with store_errors(), self.engine.connect() as conn:
            rows = conn.execute(
                select(users.c.username, users.c.email).where(
                    or_(users.c.username == user.username, users.c.email == user.email)
                )
            ).fetchall()
        fields = []
        if any(r.username == user.username for r in rows):
            fields.append("username")
        if any(r.email == user.email for r in rows):
            fields.append("email")
        return tuple(fields)

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user and, via cascade, everything they own.

        Returns True if deleted, False if not found.
        """
        with store_errors(), self.engine.begin() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
        return result.rowcount > 0

    def count_users(self) -> int:
        with store_errors(), self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(users)).scalar() or 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
