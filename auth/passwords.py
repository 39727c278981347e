"""
auth/passwords.py -- bcrypt password hashing.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). Each hash is self-salted and
  carries its algorithm version and cost factor in the "$2b$<cost>$" prefix,
  so verify() needs nothing but the stored string.

  verify() fails closed: an empty, truncated, or otherwise malformed stored
  hash returns False. bcrypt.checkpw compares digests in constant time.

  Passwords longer than 72 UTF-8 bytes are rejected by bcrypt 4.1+ with
  ValueError. Registration refuses such passwords up front; at login the
  ValueError is caught and reported as a mismatch.

  decoy_verify() burns the same CPU as a real comparison against a hash
  computed once at construction time with the same cost. The credential
  verifier calls it when an identifier does not exist so response time does
  not reveal which identifiers are registered.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import bcrypt

MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first unknown-identifier login is not slower
        # than later ones.
        self._decoy_hash = self.hash("vinylrewind_timing_decoy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of plain. Raises ValueError for an empty password."""
        if not plain:
            raise ValueError("Password must not be empty")
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True only if plain matches hashed."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw((plain or "").encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def decoy_verify(self, plain: str) -> bool:
        """Run a full-cost comparison whose result is discarded. Always returns False."""
        self.verify(plain, self._decoy_hash)
        return False
