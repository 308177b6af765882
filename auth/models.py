"""
auth/models.py -- Domain dataclasses for identity and RBAC entities.

Pattern: Data class (pure data container, zero logic). Stores map rows to
these; services and routes do the work.

Layer rule: no imports from api/, content/ or db/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Subject:
    """An identity that can authenticate and act on governed entities.

    encrypted_ssn / encrypted_phone hold CryptoBox ciphertext only. The
    plaintext is never assigned to these fields and never persisted.

    Subjects are deactivated, never deleted: audit records keep pointing at
    them for as long as the audit log exists.
    """

    username: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    full_name: str | None = None
    encrypted_ssn: str | None = None
    encrypted_phone: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class Permission:
    """A (resource, action) pair such as ("Content", "Publish")."""

    resource: str
    action: str
    name: str = ""
    description: str | None = None
    id: int | None = None

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"


@dataclass
class Role:
    name: str
    description: str | None = None
    id: int | None = None
    created_at: str | None = None
    permissions: list[Permission] = field(default_factory=list)


@dataclass
class RoleAssignment:
    subject_id: int
    role_id: int
    assigned_at: str | None = None


@dataclass
class PermissionGrant:
    role_id: int
    permission_id: int
    granted_at: str | None = None


@dataclass(frozen=True)
class SessionClaims:
    """Validated contents of a session token.

    issued_at / expires_at are Unix timestamps, as carried in the token.
    """

    subject_id: int
    username: str
    email: str
    roles: tuple[str, ...]
    issued_at: int
    expires_at: int
