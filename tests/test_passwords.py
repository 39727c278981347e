"""
tests/test_passwords.py -- Unit tests for auth.passwords.PasswordHasher.
"""

from __future__ import annotations

import pytest

from auth.passwords import PasswordHasher


class TestHash:
    def test_hash_is_not_plaintext(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("Password123!")
        assert hashed != "Password123!"
        assert hashed.startswith("$2b$04$")

    def test_same_password_hashes_differently(self, hasher: PasswordHasher) -> None:
        """Each hash carries its own salt."""
        assert hasher.hash("Password123!") != hasher.hash("Password123!")

    def test_empty_password_rejected(self, hasher: PasswordHasher) -> None:
        with pytest.raises(ValueError):
            hasher.hash("")

    def test_cost_factor_is_configurable(self) -> None:
        assert PasswordHasher(rounds=5).hash("Password123!").startswith("$2b$05$")


class TestVerify:
    def test_correct_password(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("Password123!", hasher.hash("Password123!")) is True

    def test_wrong_password(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("password123!", hasher.hash("Password123!")) is False

    @pytest.mark.parametrize("stored", ["", None, "not-a-bcrypt-hash", "$2b$04$truncated"])
    def test_malformed_stored_hash_fails_closed(self, hasher: PasswordHasher, stored) -> None:
        assert hasher.verify("Password123!", stored) is False

    def test_empty_plain_never_matches(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("", hasher.hash("Password123!")) is False

    def test_decoy_verify_always_false(self, hasher: PasswordHasher) -> None:
        assert hasher.decoy_verify("vinylrewind_timing_decoy") is False
        assert hasher.decoy_verify("anything") is False
