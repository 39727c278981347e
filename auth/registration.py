"""
auth/registration.py -- New-account validation, creation, and auto-login.

Order of work (cheapest first, so malformed input never costs a DB round
trip or a bcrypt hash):

  1. normalize     -- trim everything; case-fold username and email
  2. validate      -- every structural rule, all violations collected
  3. uniqueness    -- username, then email, against existing accounts
  4. create        -- hash, INSERT, then establish the session

Uniqueness is checked twice on purpose. The pre-check in step 3 produces a
per-field message. The UNIQUE constraints behind UserStore.insert_user() are
the real guard: a concurrent registration that slips between step 3 and the
INSERT surfaces as UniquenessViolation and is reported exactly like a
pre-check hit, never as a generic failure and never as a duplicate row.

If the client disconnects after the INSERT but before the session is
established, the account is still complete; the user simply logs in.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from auth.credentials import normalize_identifier
from auth.models import FieldError, RegistrationResult, SessionContext, User
from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher
from auth.sessions import AuthSessionManager
from auth.store import UserStore
from core.errors import UniquenessViolation

logger = logging.getLogger("vinylrewind.auth")

_USERNAME_RE = re.compile(r"^[a-z0-9._-]+$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]+$")
_EMAIL_MAX = 254


def _encodable(value: str) -> bool:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


_TAKEN_MESSAGES = {
    "username": "Username already taken.",
    "email": "That email is already registered. Please log in.",
}


@dataclass(frozen=True)
class RegistrationRules:
    username_min_length: int = 3
    username_max_length: int = 32
    password_min_length: int = 8


@dataclass(frozen=True)
class RegistrationInput:
    """Normalized registration form values."""

    username: str
    email: str
    password: str
    confirm_password: str


def normalize_registration(username: str, email: str, password: str, confirm_password: str) -> RegistrationInput:
    return RegistrationInput(
        username=normalize_identifier(username),
        email=normalize_identifier(email),
        password=(password or "").strip(),
        confirm_password=(confirm_password or "").strip(),
    )


def validate_registration(data: RegistrationInput, rules: RegistrationRules = RegistrationRules()) -> list[FieldError]:
    """Return every structural violation in data. Empty list means valid."""
    errors: list[FieldError] = []

    if not data.username:
        errors.append(FieldError("username", "Username is required."))
    elif len(data.username) < rules.username_min_length:
        errors.append(
            FieldError("username", f"Username must be at least {rules.username_min_length} characters.")
        )
    elif len(data.username) > rules.username_max_length:
        errors.append(
            FieldError("username", f"Username must be at most {rules.username_max_length} characters.")
        )
    elif not _USERNAME_RE.match(data.username):
        errors.append(
            FieldError("username", "Username may only contain letters, digits, dots, underscores and hyphens.")
        )

    if not data.email:
        errors.append(FieldError("email", "Email is required."))
    elif len(data.email) > _EMAIL_MAX or not _encodable(data.email) or not _EMAIL_RE.match(data.email):
        errors.append(FieldError("email", "Please enter a valid email address."))

    if not data.password:
        errors.append(FieldError("password", "Password is required."))
    elif not _encodable(data.password):
        errors.append(FieldError("password", "Password contains characters that cannot be used."))
    elif len(data.password) < rules.password_min_length:
        errors.append(
            FieldError("password", f"Password must be at least {rules.password_min_length} characters.")
        )
    elif len(data.password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append(FieldError("password", f"Password must be at most {MAX_PASSWORD_BYTES} bytes."))

    if not data.confirm_password:
        errors.append(FieldError("confirm_password", "Please confirm your password."))
    elif data.password != data.confirm_password:
        errors.append(FieldError("confirm_password", "Passwords do not match."))

    return errors


def _taken(fields) -> list[FieldError]:
    return [FieldError(f, _TAKEN_MESSAGES[f], code="taken") for f in fields if f in _TAKEN_MESSAGES]


class RegistrationFlow:
    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        sessions: AuthSessionManager,
        rules: RegistrationRules = RegistrationRules(),
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.sessions = sessions
        self.rules = rules

    def register(
        self,
        ctx: SessionContext,
        username: str,
        email: str,
        password: str,
        confirm_password: str,
    ) -> RegistrationResult:
        data = normalize_registration(username, email, password, confirm_password)

        errors = validate_registration(data, self.rules)
        if errors:
            return RegistrationResult(errors=errors)

        taken = []
        if self.store.username_exists(data.username):
            taken.append("username")
        if self.store.email_exists(data.email):
            taken.append("email")
        if taken:
            return RegistrationResult(errors=_taken(taken))

        user = User(
            username=data.username,
            email=data.email,
            password_hash=self.hasher.hash(data.password),
        )
        try:
            user_id = self.store.insert_user(user)
        except UniquenessViolation as exc:
            logger.info("Registration lost a uniqueness race on %s", ", ".join(exc.fields) or "unknown field")
            errors = _taken(exc.fields) or [
                FieldError("username", "Username or email already taken.", code="taken")
            ]
            return RegistrationResult(errors=errors)

        logger.info("Registered user %d", user_id)
        self.sessions.establish(ctx, user_id)
        return RegistrationResult(user_id=user_id)
