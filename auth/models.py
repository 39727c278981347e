"""
auth/models.py -- Domain dataclasses and result types for authentication.

Pattern: Data class (pure data container, zero logic). Stores and flows do the
work; these types only carry shape across component boundaries.

Result types (AuthResult, RegistrationResult, Decision) are returned by the
core components instead of raising. The presentation layer decides how each
outcome is rendered.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class User:
    """A registered account.

    username and email are stored normalized (trimmed, case-folded). The
    plaintext password never reaches this object; only the bcrypt hash does.
    """

    username: str
    email: str
    password_hash: str
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class SessionRecord:
    """Server-side session state keyed by an opaque session id.

    user_id is None for an anonymous session. Timestamps are ISO 8601 UTC.
    """

    created_at: str
    last_seen_at: str
    expires_at: str
    user_id: int | None = None


@dataclass
class SessionContext:
    """Per-request handle on the client's session.

    Built by the presentation layer from the session cookie and passed
    explicitly into every AuthSessionManager call. The manager updates
    session_id when it issues or rotates an id and sets cleared on logout;
    the presentation layer reads both to decide what Set-Cookie to emit.
    """

    session_id: str | None = None
    issued: bool = False
    cleared: bool = False


class AuthStatus(str, Enum):
    success = "success"
    invalid_credentials = "invalid_credentials"


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a login attempt. user_id is set only on success."""

    status: AuthStatus
    user_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is AuthStatus.success


class Action(str, Enum):
    read = "read"
    write = "write"
    delete = "delete"


class Decision(str, Enum):
    allow = "allow"
    deny_unauthenticated = "deny_unauthenticated"
    deny_forbidden = "deny_forbidden"


@dataclass(frozen=True)
class FieldError:
    """One violated rule on one input field.

    code is "invalid" for structural problems and "taken" for uniqueness
    conflicts, so clients can tell the two apart without parsing messages.
    """

    field: str
    message: str
    code: str = "invalid"


@dataclass
class RegistrationResult:
    """Outcome of a registration attempt.

    Exactly one of user_id / errors is meaningful. conflict is True when every
    error is a uniqueness conflict (as opposed to malformed input).
    """

    user_id: int | None = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.user_id is not None and not self.errors

    @property
    def conflict(self) -> bool:
        return bool(self.errors) and all(e.code == "taken" for e in self.errors)
