"""
API request and response models for the SecureCMS REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py,
audit/models.py and content/models.py, which own the internal domain
representation. Route handlers map between the two with the from_* helpers.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.

Sensitive fields: RegisterRequest accepts ssn and phone in plaintext. No
response model has a field for them, encrypted or not.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from audit.models import AuditRecord
from auth.models import Permission, Role, Subject
from auth.passwords import MAX_PASSWORD_BYTES
from content.models import Content

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Password length is capped at 72 UTF-8 bytes, not characters: bcrypt only
    reads 72 bytes and current bcrypt releases reject longer input outright.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=72)
    full_name: Optional[str] = Field(default=None, max_length=200)
    ssn: Optional[str] = Field(default=None, max_length=20)
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=72)


class SubjectResponse(BaseModel):
    id: int
    username: str
    email: str
    full_name: Optional[str] = None
    is_active: bool
    created_at: Optional[str] = None
    last_login: Optional[str] = None
    roles: list[str] = []

    @classmethod
    def from_subject(cls, subject: Subject, roles: list[str] | None = None) -> SubjectResponse:
        return cls(
            id=subject.id,
            username=subject.username,
            email=subject.email,
            full_name=subject.full_name,
            is_active=subject.is_active,
            created_at=subject.created_at,
            last_login=subject.last_login,
            roles=roles or [],
        )


class LoginResponse(BaseModel):
    """Response body for POST /api/v1/auth/login."""

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    expires_in: int
    user: SubjectResponse


class MeResponse(BaseModel):
    """Response body for GET /api/v1/auth/me."""

    user_id: int
    username: str
    email: str
    full_name: Optional[str] = None
    roles: list[str]
    permissions: list[str]


class TokenValidationResponse(BaseModel):
    valid: bool
    user_id: Optional[int] = None
    username: Optional[str] = None
    roles: list[str] = []
    expires_at: Optional[int] = None


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class PermissionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    resource: str = Field(min_length=1, max_length=50)
    action: str = Field(min_length=1, max_length=50)
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)


class PermissionResponse(BaseModel):
    id: int
    name: str
    resource: str
    action: str
    description: Optional[str] = None

    @classmethod
    def from_permission(cls, permission: Permission) -> PermissionResponse:
        return cls(
            id=permission.id,
            name=permission.name,
            resource=permission.resource,
            action=permission.action,
            description=permission.description,
        )


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)
    permission_ids: list[int] = Field(default_factory=list, max_length=200)


class RoleResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[str] = None
    permissions: list[str] = []

    @classmethod
    def from_role(cls, role: Role) -> RoleResponse:
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            created_at=role.created_at,
            permissions=[p.key for p in role.permissions],
        )


class RoleAssignmentRequest(BaseModel):
    """Request body for POST /api/v1/roles/assign and /roles/remove."""

    user_id: int = Field(gt=0)
    role_id: int = Field(gt=0)


class PermissionGrantRequest(BaseModel):
    permission_id: int = Field(gt=0)


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditRecordResponse(BaseModel):
    id: int
    table_name: str
    operation: str
    user_id: Optional[int] = None
    username: Optional[str] = None
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    timestamp: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_record(cls, record: AuditRecord) -> AuditRecordResponse:
        return cls(
            id=record.id,
            table_name=record.table_name,
            operation=record.operation.value,
            user_id=record.user_id,
            username=record.username,
            old_values=record.old_values,
            new_values=record.new_values,
            timestamp=record.timestamp,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
        )


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


class ContentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1)
    summary: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list, max_length=20)


class ContentUpdate(BaseModel):
    """Request body for PUT /api/v1/content/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, max_length=200)
    body: Optional[str] = None
    summary: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[list[str]] = Field(default=None, max_length=20)


class ContentResponse(BaseModel):
    id: int
    title: str
    slug: str
    body: str
    summary: Optional[str] = None
    status: str
    author_id: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    published_at: Optional[str] = None
    view_count: int = 0
    tags: list[str] = []

    @classmethod
    def from_content(cls, content: Content) -> ContentResponse:
        return cls(
            id=content.id,
            title=content.title,
            slug=content.slug,
            body=content.body,
            summary=content.summary,
            status=content.status.value,
            author_id=content.author_id,
            created_at=content.created_at,
            updated_at=content.updated_at,
            published_at=content.published_at,
            view_count=content.view_count,
            tags=list(content.tags),
        )


# ---------------------------------------------------------------------------
# Envelope and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Structured error payload. Nested inside ErrorResponse."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned by all exception handlers.

    Wrapping in an "error" key lets clients distinguish error responses from
    success responses without checking the status code first.
    """

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response body for GET /api/v1/health."""

    status: str = "ok"
    version: str
    components: dict[str, str] = {}
