"""
api/routes/v1/auth.py -- Registration, login and session endpoints.

Routes:
  POST /api/v1/auth/register      -- create an account (public)
  POST /api/v1/auth/login         -- password login; sets JWT cookie (public)
  POST /api/v1/auth/logout        -- clears cookie; 200
  GET  /api/v1/auth/me            -- current identity, roles and permissions
  GET  /api/v1/auth/permissions   -- current effective "Resource:Action" list
  GET  /api/v1/auth/validate      -- decoded claims of the presented token

Security:
  [H2] POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] AuthService.login() provides timing equalization -- use it, never inline.
  [C2] Wrong username and wrong password produce the same 401 body.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    SubjectResponse,
    TokenValidationResponse,
)
from auth.dependencies import audit_actor, extract_token, get_current_subject
from auth.models import Subject
from auth.service import AuthService
from auth.tokens import COOKIE_NAME, set_auth_cookie
from core.errors import AuthenticationError

# Auth policy:
# - POST /api/v1/auth/register:     public
# - POST /api/v1/auth/login:        public
# - POST /api/v1/auth/logout:       public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:           requires auth (get_current_subject)
# - GET  /api/v1/auth/permissions:  requires auth (get_current_subject)
# - GET  /api/v1/auth/validate:     requires a valid token
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=SubjectResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> SubjectResponse:
    """Create an account with the default role.

    ssn and phone are encrypted before they are stored and never returned.
    Duplicate username or email -> 409.
    """
    service: AuthService = request.app.state.auth_service
    subject = service.register(
        username=body.username,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        ssn=body.ssn,
        phone=body.phone,
        actor=audit_actor(request, None),
    )
    roles = request.app.state.role_service.roles_for_subject(subject.id)
    return SubjectResponse.from_subject(subject, [r.name for r in roles])


@limiter.limit(login_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set JWT cookie and return the token.

    Any failure raises AuthenticationError, which the app-level handler turns
    into one generic 401 [C2].
    """
    service: AuthService = request.app.state.auth_service
    token, expires_at, subject, roles = service.login(body.username, body.password, actor=audit_actor(request, None))

    max_age = service.issuer.expire_minutes * 60
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_at=expires_at,
            expires_in=max_age,
            user=SubjectResponse.from_subject(subject, roles),
        ).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token, max_age=max_age, secure=request.app.state.settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the JWT cookie. The token itself stays valid until it expires."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(COOKIE_NAME)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, subject: Subject = Depends(get_current_subject)) -> MeResponse:
    """Identity of the current subject with live roles and permissions (not the token's copy)."""
    roles = request.app.state.role_service.roles_for_subject(subject.id)
    return MeResponse(
        user_id=subject.id,
        username=subject.username,
        email=subject.email,
        full_name=subject.full_name,
        roles=[r.name for r in roles],
        permissions=request.app.state.auth_service.permissions_for(subject.id),
    )


@router.get("/auth/permissions", response_model=list[str])
def permissions(request: Request, subject: Subject = Depends(get_current_subject)) -> list[str]:
    return request.app.state.auth_service.permissions_for(subject.id)


@router.get("/auth/validate", response_model=TokenValidationResponse)
def validate(request: Request, subject: Subject = Depends(get_current_subject)) -> TokenValidationResponse:
    """Return the claims carried by the presented token."""
    claims = request.app.state.issuer.validate(extract_token(request))
    if claims is None:
        raise AuthenticationError("Authentication required.")
    return TokenValidationResponse(
        valid=True,
        user_id=claims.subject_id,
        username=claims.username,
        roles=list(claims.roles),
        expires_at=claims.expires_at,
    )
