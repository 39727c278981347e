"""
tests/test_guard.py -- Unit tests for auth.guard.authorize().
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from auth.guard import LOGIN_TO_READ, PUBLIC_READ, authorize
from auth.models import Action, Decision

OWNER = 1
OTHER = 2


@dataclass
class Thing:
    owner_user_id: int


RESOURCE = Thing(owner_user_id=OWNER)


@pytest.mark.parametrize(
    "user_id, action, expected",
    [
        (OWNER, Action.read, Decision.allow),
        (OTHER, Action.read, Decision.allow),
        (None, Action.read, Decision.allow),
        (OWNER, Action.write, Decision.allow),
        (OTHER, Action.write, Decision.deny_forbidden),
        (None, Action.write, Decision.deny_unauthenticated),
        (OWNER, Action.delete, Decision.allow),
        (OTHER, Action.delete, Decision.deny_forbidden),
        (None, Action.delete, Decision.deny_unauthenticated),
    ],
)
def test_public_read_policy(user_id, action, expected) -> None:
    assert authorize(user_id, RESOURCE, action, PUBLIC_READ) is expected


@pytest.mark.parametrize(
    "user_id, expected",
    [
        (OWNER, Decision.allow),
        (OTHER, Decision.allow),
        (None, Decision.deny_unauthenticated),
    ],
)
def test_login_to_read_policy(user_id, expected) -> None:
    assert authorize(user_id, RESOURCE, Action.read, LOGIN_TO_READ) is expected


def test_policy_never_relaxes_writes() -> None:
    assert authorize(OTHER, RESOURCE, Action.write, LOGIN_TO_READ) is Decision.deny_forbidden


class TestCreate:
    """resource=None with Action.write means creating a new resource."""

    def test_authenticated_may_create(self) -> None:
        assert authorize(OTHER, None, Action.write) is Decision.allow

    def test_anonymous_may_not_create(self) -> None:
        assert authorize(None, None, Action.write) is Decision.deny_unauthenticated

    def test_anonymous_list_under_public_read(self) -> None:
        assert authorize(None, None, Action.read) is Decision.allow

    def test_delete_requires_resource(self) -> None:
        with pytest.raises(ValueError):
            authorize(OWNER, None, Action.delete)
