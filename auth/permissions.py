"""
auth/permissions.py -- RBAC evaluation and the policy decision point.

PermissionEvaluator answers "may subject S do ACTION on RESOURCE?" by walking
Subject -> RoleAssignment -> Role -> PermissionGrant -> Permission. It knows
nothing about storage: it is handed a GrantSource, which in production is
the RbacRepository of the caller's unit of work.

Rules:
  - Exact, case-sensitive match on resource and action. No wildcards, no
    hierarchy. "content:publish" does not grant "Content:Publish".
  - No assignments means no permissions.
  - No caching. Every call re-reads grants, so revoking a grant or removing
    an assignment takes effect on the next check.
  - No owner bypass. That rule belongs to PolicyDecisionPoint.

PolicyDecisionPoint is the single place that layers ownership on top of the
evaluator: the author of a content item may update, delete, publish and
unpublish it whatever their roles say.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import Permission

logger = logging.getLogger("securecms.rbac")


class GrantSource(Protocol):
    """Read-only source of the permissions reachable from a subject."""

    def permissions_for_subject(self, subject_id: int) -> list[Permission]: ...


class PermissionEvaluator:
    def __init__(self, grants: GrantSource) -> None:
        self._grants = grants

    def has_permission(self, subject_id: int | None, resource: str, action: str) -> bool:
        if subject_id is None:
            return False
        granted = self._grants.permissions_for_subject(subject_id)
        return any(p.resource == resource and p.action == action for p in granted)

    def list_permissions(self, subject_id: int | None) -> set[str]:
        """Return the subject's effective permissions as "Resource:Action" strings."""
        if subject_id is None:
            return set()
        return {p.key for p in self._grants.permissions_for_subject(subject_id)}


# Actions an owner may take on their own item without holding the permission.
# Unpublish is checked as Publish.
OWNER_ACTIONS = frozenset({"Update", "Delete", "Publish"})


class PolicyDecisionPoint:
    """Evaluator plus ownership.

    Usage:
        pdp = PolicyDecisionPoint(PermissionEvaluator(uow.rbac))
        if not pdp.decide(actor_id, "Content", "Publish", owner_id=item.author_id):
            raise AuthorizationError(...)
    """

    def __init__(self, evaluator: PermissionEvaluator) -> None:
        self.evaluator = evaluator

    def decide(self, subject_id: int | None, resource: str, action: str, owner_id: int | None = None) -> bool:
        if subject_id is None:
            return False
        if owner_id is not None and owner_id == subject_id and action in OWNER_ACTIONS:
            return True
        allowed = self.evaluator.has_permission(subject_id, resource, action)
        if not allowed:
            logger.info("Denied %s:%s to subject %s", resource, action, subject_id)
        return allowed
