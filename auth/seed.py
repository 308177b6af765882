"""
auth/seed.py -- Default permission catalogue and built-in roles.

seed_defaults() is idempotent: it creates only what is missing, so it runs on
every API startup and from `python main.py init`. Everything it writes is
audited with the system actor.

Built-in roles:
  Admin   every catalogue permission
  Editor  content management including publish
  Author  Content:Create and Content:Read (the default registration role)

Existing roles are topped up with missing catalogue grants but never
stripped: an operator who granted Editor extra permissions keeps them.
"""

from __future__ import annotations

import logging

from audit.models import SYSTEM_ACTOR, AuditActor, AuditEntry, AuditOperation, snapshot
from auth.models import Permission, Role

logger = logging.getLogger("securecms.rbac")

PERMISSION_CATALOGUE: list[tuple[str, str, str]] = [
    ("Content", "Create", "Create new content"),
    ("Content", "Read", "Read content"),
    ("Content", "Update", "Update any content"),
    ("Content", "Delete", "Delete any content"),
    ("Content", "Publish", "Publish or unpublish any content"),
    ("Role", "Create", "Create roles"),
    ("Role", "Read", "View roles and permissions"),
    ("Role", "Update", "Assign roles and grant permissions"),
    ("Permission", "Create", "Create permissions"),
    ("User", "Read", "View users and their roles"),
    ("User", "Update", "Deactivate users"),
    ("Audit", "Read", "Read the audit trail"),
]

DEFAULT_ROLES: dict[str, tuple[str, list[str]]] = {
    "Admin": ("Full system access", [f"{r}:{a}" for r, a, _ in PERMISSION_CATALOGUE]),
    "Editor": (
        "Manages and publishes all content",
        ["Content:Create", "Content:Read", "Content:Update", "Content:Delete", "Content:Publish"],
    ),
    "Author": ("Writes own content", ["Content:Create", "Content:Read"]),
}


def seed_defaults(db, actor: AuditActor = SYSTEM_ACTOR) -> int:
    """Create missing catalogue permissions, roles and grants. Returns the number of rows written."""
    written = 0
    with db.unit_of_work(write=True) as uow:
        by_key: dict[str, Permission] = {}
        for resource, action, description in PERMISSION_CATALOGUE:
            permission = uow.rbac.get_permission_by_pair(resource, action)
            if permission is None:
                permission = Permission(
                    resource=resource, action=action, name=f"{resource}:{action}", description=description
                )
                uow.rbac.create_permission(permission)
                uow.audit.record(
                    AuditEntry("permissions", AuditOperation.CREATE, actor, new_values=snapshot(permission))
                )
                written += 1
            by_key[permission.key] = permission

        for name, (description, keys) in DEFAULT_ROLES.items():
            role = uow.rbac.get_role_by_name(name)
            if role is None:
                role = Role(name=name, description=description)
                uow.rbac.create_role(role)
                state = snapshot(role, exclude=("permissions",))
                uow.audit.record(AuditEntry("roles", AuditOperation.CREATE, actor, new_values=state))
                written += 1
            for key in keys:
                permission = by_key[key]
                if uow.rbac.get_grant(role.id, permission.id) is not None:
                    continue
                grant = uow.rbac.grant(role.id, permission.id)
                uow.audit.record(
                    AuditEntry("role_permissions", AuditOperation.CREATE, actor, new_values=snapshot(grant))
                )
                written += 1
        uow.commit()

    if written:
        logger.info("Seeded %d default permission/role rows", written)
    return written
