"""
auth/store.py -- SQLAlchemy Core persistence for subjects, roles and grants.

Pattern: Repository + Data Mapper. SubjectRepository and RbacRepository are
the repositories; the _row_to_* functions are the mappers. Service and route
code never touches SQL directly.

Unlike a standalone store, these repositories do not own an engine. They are
constructed by db.database.UnitOfWork around the unit's single connection and
never commit: the unit of work decides whether the write and its audit record
land together or not at all.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness (username, email, role name, permission pair, assignment and
  grant pairs) is enforced by the schema. Services check first so the common
  case gets a precise message, but a concurrent writer can still win the race
  between the check and the insert; the IntegrityError it leaves behind is
  translated to ConflictError here.

  There is no delete for subjects. Deactivation keeps audit references valid.

Layer rule: imports core/ and db/metadata.py only.
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.models import Permission, PermissionGrant, Role, RoleAssignment, Subject
from core.errors import ConflictError
from db.metadata import metadata, now_iso

logger = logging.getLogger("securecms.rbac")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("full_name", String(200)),
    Column("encrypted_ssn", Text),  # CryptoBox ciphertext, never plaintext
    Column("encrypted_phone", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", String(255)),
    Column("created_at", String(32), nullable=False),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("resource", String(50), nullable=False),
    Column("action", String(50), nullable=False),
    Column("description", String(255)),
    UniqueConstraint("resource", "action", name="uq_permission_resource_action"),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("assigned_at", String(32), nullable=False),
    PrimaryKeyConstraint("user_id", "role_id", name="pk_user_roles"),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id"), nullable=False),
    Column("granted_at", String(32), nullable=False),
    PrimaryKeyConstraint("role_id", "permission_id", name="pk_role_permissions"),
)


def _insert(conn: Connection, stmt, what: str):
    """Execute an INSERT, turning a unique-key violation into ConflictError."""
    try:
        return conn.execute(stmt)
    except IntegrityError as exc:
        logger.info("Unique constraint rejected %s", what)
        raise ConflictError(f"{what} already exists") from exc


# ---------------------------------------------------------------------------
# Subjects
# ---------------------------------------------------------------------------


class SubjectRepository:
    """Repository for Subject rows, bound to one unit-of-work connection."""

    _MUTABLE_FIELDS = {"full_name", "encrypted_ssn", "encrypted_phone", "is_active", "hashed_password"}

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def create(self, subject: Subject) -> int:
        """Insert a subject and return its id. Raises ConflictError on duplicate username/email."""
        created_at = subject.created_at or now_iso()
        result = _insert(
            self._conn,
            users.insert().values(
                username=subject.username,
                email=subject.email,
                password_hash=subject.hashed_password,
                full_name=subject.full_name,
                encrypted_ssn=subject.encrypted_ssn,
                encrypted_phone=subject.encrypted_phone,
                is_active=1 if subject.is_active else 0,
                created_at=created_at,
            ),
            f"Subject {subject.username!r}",
        )
        subject.id = result.inserted_primary_key[0]
        subject.created_at = created_at
        return subject.id

    def get_by_id(self, subject_id: int) -> Subject | None:
        row = self._conn.execute(users.select().where(users.c.id == subject_id)).fetchone()
        return _row_to_subject(row) if row is not None else None

    def get_by_username(self, username: str) -> Subject | None:
        """Exact, case-sensitive match. Returns None if not found."""
        row = self._conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_subject(row) if row is not None else None

    def get_by_email(self, email: str) -> Subject | None:
        row = self._conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_subject(row) if row is not None else None

    def list_all(self) -> list[Subject]:
        rows = self._conn.execute(users.select().order_by(users.c.username)).fetchall()
        return [_row_to_subject(r) for r in rows]

    def update(self, subject_id: int, **fields) -> bool:
        """Update mutable fields. Returns True if a row was updated.

        Accepted fields: full_name, encrypted_ssn, encrypted_phone, is_active,
        hashed_password. Unknown fields raise ValueError.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown subject fields: {unknown!r}")
        values = dict(fields)
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        if "hashed_password" in values:
            values["password_hash"] = values.pop("hashed_password")
        if not values:
            return False
        result = self._conn.execute(users.update().where(users.c.id == subject_id).values(**values))
        return result.rowcount > 0

    def deactivate(self, subject_id: int) -> bool:
        return self.update(subject_id, is_active=False)

    def update_last_login(self, subject_id: int, at: str | None = None) -> str:
        """Stamp last_login_at and return the value written."""
        stamp = at or now_iso()
        self._conn.execute(users.update().where(users.c.id == subject_id).values(last_login_at=stamp))
        return stamp


# ---------------------------------------------------------------------------
# Roles, permissions, assignments, grants
# ---------------------------------------------------------------------------


class RbacRepository:
    """Repository for Role, Permission, RoleAssignment and PermissionGrant rows.

    Also the grant source for auth.permissions.PermissionEvaluator: see
    permissions_for_subject().
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        created_at = role.created_at or now_iso()
        result = _insert(
            self._conn,
            roles.insert().values(name=role.name, description=role.description, created_at=created_at),
            f"Role {role.name!r}",
        )
        role.id = result.inserted_primary_key[0]
        role.created_at = created_at
        return role.id

    def get_role(self, role_id: int) -> Role | None:
        row = self._conn.execute(roles.select().where(roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        row = self._conn.execute(roles.select().where(roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        """Return every role with its granted permissions, ordered by name."""
        rows = self._conn.execute(roles.select().order_by(roles.c.name)).fetchall()
        result = []
        for row in rows:
            role = _row_to_role(row)
            role.permissions = self.permissions_for_role(role.id)
            result.append(role)
        return result

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, permission: Permission) -> int:
        result = _insert(
            self._conn,
            permissions.insert().values(
                name=permission.name or permission.key,
                resource=permission.resource,
                action=permission.action,
                description=permission.description,
            ),
            f"Permission {permission.key!r}",
        )
        permission.id = result.inserted_primary_key[0]
        if not permission.name:
            permission.name = permission.key
        return permission.id

    def get_permission(self, permission_id: int) -> Permission | None:
        row = self._conn.execute(permissions.select().where(permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_pair(self, resource: str, action: str) -> Permission | None:
        row = self._conn.execute(
            permissions.select().where((permissions.c.resource == resource) & (permissions.c.action == action))
        ).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        rows = self._conn.execute(
            permissions.select().order_by(permissions.c.resource, permissions.c.action)
        ).fetchall()
        return [_row_to_permission(r) for r in rows]

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    def get_assignment(self, subject_id: int, role_id: int) -> RoleAssignment | None:
        row = self._conn.execute(
            user_roles.select().where((user_roles.c.user_id == subject_id) & (user_roles.c.role_id == role_id))
        ).fetchone()
        if row is None:
            return None
        return RoleAssignment(subject_id=row.user_id, role_id=row.role_id, assigned_at=row.assigned_at)

    def assign(self, subject_id: int, role_id: int) -> RoleAssignment:
        """Insert an assignment. Raises ConflictError if it already exists."""
        assignment = RoleAssignment(subject_id=subject_id, role_id=role_id, assigned_at=now_iso())
        _insert(
            self._conn,
            user_roles.insert().values(user_id=subject_id, role_id=role_id, assigned_at=assignment.assigned_at),
            f"Assignment of role {role_id} to subject {subject_id}",
        )
        return assignment

    def unassign(self, subject_id: int, role_id: int) -> bool:
        result = self._conn.execute(
            user_roles.delete().where((user_roles.c.user_id == subject_id) & (user_roles.c.role_id == role_id))
        )
        return result.rowcount > 0

    def roles_for_subject(self, subject_id: int) -> list[Role]:
        rows = self._conn.execute(
            select(roles)
            .join(user_roles, user_roles.c.role_id == roles.c.id)
            .where(user_roles.c.user_id == subject_id)
            .order_by(roles.c.name)
        ).fetchall()
        return [_row_to_role(r) for r in rows]

    def role_names_for_subject(self, subject_id: int) -> list[str]:
        return [role.name for role in self.roles_for_subject(subject_id)]

    # ------------------------------------------------------------------
    # Permission grants
    # ------------------------------------------------------------------

    def get_grant(self, role_id: int, permission_id: int) -> PermissionGrant | None:
        row = self._conn.execute(
            role_permissions.select().where(
                (role_permissions.c.role_id == role_id) & (role_permissions.c.permission_id == permission_id)
            )
        ).fetchone()
        if row is None:
            return None
        return PermissionGrant(role_id=row.role_id, permission_id=row.permission_id, granted_at=row.granted_at)

    def grant(self, role_id: int, permission_id: int) -> PermissionGrant:
        """Insert a grant. Raises ConflictError if it already exists."""
        grant = PermissionGrant(role_id=role_id, permission_id=permission_id, granted_at=now_iso())
        _insert(
            self._conn,
            role_permissions.insert().values(
                role_id=role_id, permission_id=permission_id, granted_at=grant.granted_at
            ),
            f"Grant of permission {permission_id} to role {role_id}",
        )
        return grant

    def revoke(self, role_id: int, permission_id: int) -> bool:
        result = self._conn.execute(
            role_permissions.delete().where(
                (role_permissions.c.role_id == role_id) & (role_permissions.c.permission_id == permission_id)
            )
        )
        return result.rowcount > 0

    def permissions_for_role(self, role_id: int) -> list[Permission]:
        rows = self._conn.execute(
            select(permissions)
            .join(role_permissions, role_permissions.c.permission_id == permissions.c.id)
            .where(role_permissions.c.role_id == role_id)
            .order_by(permissions.c.resource, permissions.c.action)
        ).fetchall()
        return [_row_to_permission(r) for r in rows]

    def permissions_for_subject(self, subject_id: int) -> list[Permission]:
        """Every permission reachable from the subject through its role assignments.

        One row per (role, permission) path, so a permission held through two
        roles appears twice. The evaluator deduplicates.
        """
        rows = self._conn.execute(
            select(permissions)
            .join(role_permissions, role_permissions.c.permission_id == permissions.c.id)
            .join(user_roles, user_roles.c.role_id == role_permissions.c.role_id)
            .where(user_roles.c.user_id == subject_id)
        ).fetchall()
        return [_row_to_permission(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_subject(row) -> Subject:
    return Subject(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.password_hash,
        full_name=row.full_name,
        encrypted_ssn=row.encrypted_ssn,
        encrypted_phone=row.encrypted_phone,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login_at,
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description, created_at=row.created_at)


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        resource=row.resource,
        action=row.action,
        description=row.description,
    )
