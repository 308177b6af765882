"""
auth/roles.py -- Role, permission, assignment and grant administration.

Every mutation runs in its own unit of work and writes its audit record in
the same transaction. Checks run before inserts so the usual failure gets a
precise message; the schema's unique constraints catch the races the checks
cannot (two requests creating role "Editor" at the same moment), and the
loser sees ConflictError with nothing written.

Authorization for these operations is enforced at the HTTP boundary
(Role:Create, Role:Update, Permission:Create). This module assumes the caller
is allowed and records who it was.
"""

from __future__ import annotations

import logging

from audit.models import SYSTEM_ACTOR, AuditActor, AuditEntry, AuditOperation, snapshot
from auth.models import Permission, PermissionGrant, Role, RoleAssignment
from core.errors import ConflictError, NotFoundError

logger = logging.getLogger("securecms.rbac")


def _role_snapshot(role: Role) -> dict:
    return snapshot(role, exclude=("permissions",))


class RoleService:
    """Usage:
    roles = RoleService(db)
    editor = roles.create_role("Editor", "Edits content", actor=admin_actor)
    roles.assign_role(alice.id, editor.id, actor=admin_actor)
    """

    def __init__(self, db) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(
        self,
        name: str,
        description: str | None = None,
        permission_ids: list[int] | None = None,
        actor: AuditActor = SYSTEM_ACTOR,
    ) -> Role:
        """Create a role and optionally grant it permissions in the same transaction.

        Raises ConflictError if the name is taken, NotFoundError if a
        permission id does not exist.
        """
        with self._db.unit_of_work(write=True) as uow:
            if uow.rbac.get_role_by_name(name) is not None:
                raise ConflictError(f"Role {name!r} already exists")
            role = Role(name=name, description=description)
            uow.rbac.create_role(role)
            uow.audit.record(AuditEntry("roles", AuditOperation.CREATE, actor, new_values=_role_snapshot(role)))

            for permission_id in dict.fromkeys(permission_ids or []):
                permission = uow.rbac.get_permission(permission_id)
                if permission is None:
                    raise NotFoundError("Permission", permission_id)
                grant = uow.rbac.grant(role.id, permission_id)
                uow.audit.record(
                    AuditEntry("role_permissions", AuditOperation.CREATE, actor, new_values=snapshot(grant))
                )
                role.permissions.append(permission)
            uow.commit()
        logger.info("Role %r created (id=%s)", name, role.id)
        return role

    def get_role(self, role_id: int) -> Role:
        with self._db.unit_of_work() as uow:
            role = uow.rbac.get_role(role_id)
            if role is None:
                raise NotFoundError("Role", role_id)
            role.permissions = uow.rbac.permissions_for_role(role_id)
        return role

    def list_roles(self) -> list[Role]:
        with self._db.unit_of_work() as uow:
            return uow.rbac.list_roles()

    def roles_for_subject(self, subject_id: int) -> list[Role]:
        """Roles assigned to the subject. Raises NotFoundError for an unknown subject."""
        with self._db.unit_of_work() as uow:
            if uow.subjects.get_by_id(subject_id) is None:
                raise NotFoundError("Subject", subject_id)
            return uow.rbac.roles_for_subject(subject_id)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(
        self,
        resource: str,
        action: str,
        name: str | None = None,
        description: str | None = None,
        actor: AuditActor = SYSTEM_ACTOR,
    ) -> Permission:
        """Raises ConflictError if the (resource, action) pair exists."""
        with self._db.unit_of_work(write=True) as uow:
            if uow.rbac.get_permission_by_pair(resource, action) is not None:
                raise ConflictError(f"Permission {resource}:{action} already exists")
            permission = Permission(resource=resource, action=action, name=name or "", description=description)
            uow.rbac.create_permission(permission)
            uow.audit.record(
                AuditEntry("permissions", AuditOperation.CREATE, actor, new_values=snapshot(permission))
            )
            uow.commit()
        logger.info("Permission %s created (id=%s)", permission.key, permission.id)
        return permission

    def list_permissions(self) -> list[Permission]:
        with self._db.unit_of_work() as uow:
            return uow.rbac.list_permissions()

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_role(self, subject_id: int, role_id: int, actor: AuditActor = SYSTEM_ACTOR) -> RoleAssignment:
        """Assign a role. Re-assigning is a ConflictError, not an upsert."""
        with self._db.unit_of_work(write=True) as uow:
            if uow.subjects.get_by_id(subject_id) is None:
                raise NotFoundError("Subject", subject_id)
            if uow.rbac.get_role(role_id) is None:
                raise NotFoundError("Role", role_id)
            if uow.rbac.get_assignment(subject_id, role_id) is not None:
                raise ConflictError("Subject already has this role")
            assignment = uow.rbac.assign(subject_id, role_id)
            uow.audit.record(
                AuditEntry("user_roles", AuditOperation.CREATE, actor, new_values=snapshot(assignment))
            )
            uow.commit()
        logger.info("Role %s assigned to subject %s", role_id, subject_id)
        return assignment

    def remove_role(self, subject_id: int, role_id: int, actor: AuditActor = SYSTEM_ACTOR) -> None:
        """Remove an assignment. Raises NotFoundError if it does not exist."""
        with self._db.unit_of_work(write=True) as uow:
            assignment = uow.rbac.get_assignment(subject_id, role_id)
            if assignment is None:
                raise NotFoundError("Role assignment")
            uow.rbac.unassign(subject_id, role_id)
            uow.audit.record(
                AuditEntry("user_roles", AuditOperation.DELETE, actor, old_values=snapshot(assignment))
            )
            uow.commit()
        logger.info("Role %s removed from subject %s", role_id, subject_id)

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def grant_permission(self, role_id: int, permission_id: int, actor: AuditActor = SYSTEM_ACTOR) -> PermissionGrant:
        with self._db.unit_of_work(write=True) as uow:
            if uow.rbac.get_role(role_id) is None:
                raise NotFoundError("Role", role_id)
            if uow.rbac.get_permission(permission_id) is None:
                raise NotFoundError("Permission", permission_id)
            if uow.rbac.get_grant(role_id, permission_id) is not None:
                raise ConflictError("Role already holds this permission")
            grant = uow.rbac.grant(role_id, permission_id)
            uow.audit.record(
                AuditEntry("role_permissions", AuditOperation.CREATE, actor, new_values=snapshot(grant))
            )
            uow.commit()
        logger.info("Permission %s granted to role %s", permission_id, role_id)
        return grant

    def revoke_permission(self, role_id: int, permission_id: int, actor: AuditActor = SYSTEM_ACTOR) -> None:
        with self._db.unit_of_work(write=True) as uow:
            grant = uow.rbac.get_grant(role_id, permission_id)
            if grant is None:
                raise NotFoundError("Permission grant")
            uow.rbac.revoke(role_id, permission_id)
            uow.audit.record(
                AuditEntry("role_permissions", AuditOperation.DELETE, actor, old_values=snapshot(grant))
            )
            uow.commit()
        logger.info("Permission %s revoked from role %s", permission_id, role_id)
