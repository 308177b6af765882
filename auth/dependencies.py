"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and RBAC.

Two token carriers are checked in priority order:
  1. JWT cookie ("access_token") -- set by POST /api/v1/auth/login.
  2. Authorization: Bearer <token> header -- API clients.

Both converge on SessionIssuer.validate() and then a fresh load of the
subject, so a deactivated subject is rejected even while its token is still
inside its lifetime.

try_get_current_subject() is the soft variant (returns None on failure).
get_current_subject() wraps it and raises AuthenticationError.
require_permission(resource, action) wraps get_current_subject() and raises
AuthorizationError when the evaluator says no.

These helpers raise the domain errors from core/errors.py rather than
HTTPException. The handlers in api/main.py turn them into 401/403 responses
with the standard error envelope.

Layer rule: may import fastapi (Request) because this module is part of the
dependency-injection system. Imports nothing from api/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from audit.models import AuditActor
from auth.models import Subject
from auth.tokens import COOKIE_NAME
from core.errors import AuthenticationError, AuthorizationError


def extract_token(request: Request) -> str | None:
    token: str | None = request.cookies.get(COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def try_get_current_subject(request: Request) -> Subject | None:
    """Authenticate the request via cookie or Bearer header.

    Returns the active Subject on success, None on any failure. Never raises.
    """
    token = extract_token(request)
    if not token:
        return None
    claims = request.app.state.issuer.validate(token)
    if claims is None:
        return None
    subject = request.app.state.auth_service.get_subject(claims.subject_id)
    if subject is None or not subject.is_active:
        return None
    return subject


def get_current_subject(request: Request) -> Subject:
    """Require authentication. Raises AuthenticationError if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(subject: Subject = Depends(get_current_subject)): ...
    """
    subject = try_get_current_subject(request)
    if subject is None:
        raise AuthenticationError("Authentication required.")
    return subject


def require_permission(resource: str, action: str):
    """Dependency factory: require an authenticated subject holding resource:action.

    Use as a FastAPI dependency:
        @router.get("/roles")
        def list_roles(subject: Subject = Depends(require_permission("Role", "Read"))): ...
    """

    def _check(request: Request, subject: Subject = Depends(get_current_subject)) -> Subject:
        if not request.app.state.auth_service.has_permission(subject.id, resource, action):
            raise AuthorizationError(f"{resource}:{action} permission required")
        return subject

    return _check


def audit_actor(request: Request, subject: Subject | None) -> AuditActor:
    """Build the audit actor for a request: who, from which address, with which client."""
    return AuditActor(
        subject_id=subject.id if subject else None,
        username=subject.username if subject else None,
        ip_address=request.client.host if request.client else None,
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
    )
