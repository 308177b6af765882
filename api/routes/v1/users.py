"""
api/routes/v1/users.py -- Subject administration.

Routes:
  GET  /api/v1/users                   -- list subjects (User:Read)
  POST /api/v1/users/{user_id}/deactivate  -- deactivate a subject (User:Update)

There is no delete: subjects are deactivated so audit records keep a valid
actor reference. A deactivated subject's outstanding tokens are rejected by
get_current_subject() on their next use.
"""

from fastapi import APIRouter, Depends, Request

from api.models import SubjectResponse
from auth.dependencies import audit_actor, require_permission
from auth.models import Subject
from core.errors import ConflictError

router = APIRouter()


@router.get("/users", response_model=list[SubjectResponse])
def list_users(
    request: Request, subject: Subject = Depends(require_permission("User", "Read"))
) -> list[SubjectResponse]:
    return [SubjectResponse.from_subject(s) for s in request.app.state.auth_service.list_subjects()]


@router.post("/users/{user_id}/deactivate", response_model=SubjectResponse)
def deactivate_user(
    user_id: int,
    request: Request,
    subject: Subject = Depends(require_permission("User", "Update")),
) -> SubjectResponse:
    """Deactivate a subject. Deactivating yourself is refused (409)."""
    if user_id == subject.id:
        raise ConflictError("You cannot deactivate your own account.")
    target = request.app.state.auth_service.deactivate(user_id, audit_actor(request, subject))
    return SubjectResponse.from_subject(target)
