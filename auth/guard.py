"""
auth/guard.py -- Ownership-based authorization for owned resources.

Rules:
  Read   -- allowed for everyone, anonymous included, unless the feature's
            AccessPolicy sets read_requires_login (then any authenticated
            user may read).
  Write  -- requires an authenticated user. On an existing resource the user
            must also be its owner. With resource=None (creating a new
            resource) authentication alone is enough; the creator becomes the
            owner.
  Delete -- same as Write, but resource is mandatory.

DenyUnauthenticated and DenyForbidden stay distinct: the first means "log in
and retry", the second means "you will never be allowed to do this".

Layer rule: no imports from api/ or catalog/. Resources are duck-typed on
their owner_user_id attribute.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from auth.models import Action, Decision


class OwnedResource(Protocol):
    owner_user_id: int


@dataclass(frozen=True)
class AccessPolicy:
    """Per-feature read policy. Write/Delete always need the owner."""

    read_requires_login: bool = False


PUBLIC_READ = AccessPolicy(read_requires_login=False)
LOGIN_TO_READ = AccessPolicy(read_requires_login=True)


def authorize(
    current_user_id: int | None,
    resource: OwnedResource | None,
    action: Action,
    policy: AccessPolicy = PUBLIC_READ,
) -> Decision:
    """Decide whether current_user_id may perform action on resource."""
    if action is Action.read:
        if policy.read_requires_login and current_user_id is None:
            return Decision.deny_unauthenticated
        return Decision.allow

    if current_user_id is None:
        return Decision.deny_unauthenticated
    if resource is None:
        if action is Action.delete:
            raise ValueError("delete requires a resource")
        return Decision.allow
    if resource.owner_user_id != current_user_id:
        return Decision.deny_forbidden
    return Decision.allow
