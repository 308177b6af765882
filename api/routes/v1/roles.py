"""
api/routes/v1/roles.py -- Role, permission and assignment administration.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /roles                              -- list roles with permissions (Role:Read)
  POST   /roles                              -- create role (Role:Create)
  POST   /roles/assign                       -- assign role to subject (Role:Update)
  POST   /roles/remove                       -- remove role from subject (Role:Update)
  GET    /roles/user/{user_id}               -- a subject's roles (User:Read)
  POST   /roles/{role_id}/permissions        -- grant permission (Role:Update)
  DELETE /roles/{role_id}/permissions/{pid}  -- revoke permission (Role:Update)
  GET    /permissions                        -- permission catalogue (Role:Read)
  POST   /permissions                        -- create permission (Permission:Create)

Every mutation is audited by RoleService with the caller as actor.
Duplicates are 409, unknown ids are 404.
"""

from fastapi import APIRouter, Depends, Request

from api.models import (
    MessageResponse,
    PermissionCreate,
    PermissionGrantRequest,
    PermissionResponse,
    RoleAssignmentRequest,
    RoleCreate,
    RoleResponse,
)
from auth.dependencies import audit_actor, require_permission
from auth.models import Subject

router = APIRouter()


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, subject: Subject = Depends(require_permission("Role", "Read"))) -> list[RoleResponse]:
    return [RoleResponse.from_role(r) for r in request.app.state.role_service.list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    subject: Subject = Depends(require_permission("Role", "Create")),
) -> RoleResponse:
    role = request.app.state.role_service.create_role(
        body.name,
        body.description,
        permission_ids=body.permission_ids,
        actor=audit_actor(request, subject),
    )
    return RoleResponse.from_role(role)


@router.post("/roles/assign", response_model=MessageResponse)
def assign_role(
    request: Request,
    body: RoleAssignmentRequest,
    subject: Subject = Depends(require_permission("Role", "Update")),
) -> MessageResponse:
    request.app.state.role_service.assign_role(body.user_id, body.role_id, actor=audit_actor(request, subject))
    return MessageResponse(message="Role assigned successfully")


@router.post("/roles/remove", response_model=MessageResponse)
def remove_role(
    request: Request,
    body: RoleAssignmentRequest,
    subject: Subject = Depends(require_permission("Role", "Update")),
) -> MessageResponse:
    request.app.state.role_service.remove_role(body.user_id, body.role_id, actor=audit_actor(request, subject))
    return MessageResponse(message="Role removed successfully")


@router.get("/roles/user/{user_id}", response_model=list[RoleResponse])
def user_roles(
    user_id: int,
    request: Request,
    subject: Subject = Depends(require_permission("User", "Read")),
) -> list[RoleResponse]:
    return [RoleResponse.from_role(r) for r in request.app.state.role_service.roles_for_subject(user_id)]


@router.post("/roles/{role_id}/permissions", response_model=RoleResponse)
def grant_permission(
    role_id: int,
    request: Request,
    body: PermissionGrantRequest,
    subject: Subject = Depends(require_permission("Role", "Update")),
) -> RoleResponse:
    roles = request.app.state.role_service
    roles.grant_permission(role_id, body.permission_id, actor=audit_actor(request, subject))
    return RoleResponse.from_role(roles.get_role(role_id))


@router.delete("/roles/{role_id}/permissions/{permission_id}", response_model=RoleResponse)
def revoke_permission(
    role_id: int,
    permission_id: int,
    request: Request,
    subject: Subject = Depends(require_permission("Role", "Update")),
) -> RoleResponse:
    roles = request.app.state.role_service
    roles.revoke_permission(role_id, permission_id, actor=audit_actor(request, subject))
    return RoleResponse.from_role(roles.get_role(role_id))


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(
    request: Request, subject: Subject = Depends(require_permission("Role", "Read"))
) -> list[PermissionResponse]:
    return [PermissionResponse.from_permission(p) for p in request.app.state.role_service.list_permissions()]


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(
    request: Request,
    body: PermissionCreate,
    subject: Subject = Depends(require_permission("Permission", "Create")),
) -> PermissionResponse:
    permission = request.app.state.role_service.create_permission(
        body.resource,
        body.action,
        name=body.name,
        description=body.description,
        actor=audit_actor(request, subject),
    )
    return PermissionResponse.from_permission(permission)
