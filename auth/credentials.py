"""
auth/credentials.py -- Login credential verification with timing equalization.

verify() always runs exactly one bcrypt comparison at the configured cost:
  - unknown identifier: against the hasher's decoy hash
  - known identifier:   against the stored hash
so response time does not reveal whether an account exists. Both failure
modes collapse into the same InvalidCredentials result; callers must never
tell them apart in anything they show a client.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging

from auth.models import AuthResult, AuthStatus
from auth.passwords import PasswordHasher
from auth.store import UserStore

logger = logging.getLogger("vinylrewind.auth")

INVALID_CREDENTIALS = AuthResult(status=AuthStatus.invalid_credentials)


def normalize_identifier(raw: str | None) -> str:
    """Trim and case-fold a username or email for lookup."""
    return (raw or "").strip().casefold()


class CredentialVerifier:
    def __init__(self, store: UserStore, hasher: PasswordHasher) -> None:
        self.store = store
        self.hasher = hasher

    def verify(self, identifier: str, password: str) -> AuthResult:
        """Check a login attempt. identifier is a username or an email address.

        Normalization is applied here as well, so callers may pass raw input.
        """
        ident = normalize_identifier(identifier)
        plain = (password or "").strip()

        user = self.store.find_by_identifier(ident) if ident else None
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            self.hasher.decoy_verify(plain)
            logger.warning("Login failed: invalid credentials")
            return INVALID_CREDENTIALS
        if not self.hasher.verify(plain, user.password_hash):
            logger.warning("Login failed: invalid credentials")
            return INVALID_CREDENTIALS
        logger.info("Login succeeded for user %d", user.id)
        return AuthResult(status=AuthStatus.success, user_id=user.id)
