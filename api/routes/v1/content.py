"""
api/routes/v1/content.py -- Content CRUD and the publish workflow.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /content                  -- published items; plus own drafts when authenticated
  GET    /content/mine             -- the caller's items (auth)
  GET    /content/{content_id}     -- one item; drafts only for author or Content:Update
  POST   /content                  -- create draft (Content:Create)
  PUT    /content/{content_id}     -- edit (owner or Content:Update)
  DELETE /content/{content_id}     -- delete (owner or Content:Delete)
  POST   /content/{content_id}/publish    -- publish (owner or Content:Publish)
  POST   /content/{content_id}/unpublish  -- back to draft (owner or Content:Publish)

Unlike the role and audit routers, permission checks for content live in
ContentService: the owner bypass needs the item loaded first, and the check
must share the unit of work with the write it guards.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.models import ContentCreate, ContentResponse, ContentUpdate, MessageResponse
from auth.dependencies import audit_actor, get_current_subject, try_get_current_subject
from auth.models import Subject

router = APIRouter()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/content", response_model=list[ContentResponse])
def list_content(
    request: Request, subject: Optional[Subject] = Depends(try_get_current_subject)
) -> list[ContentResponse]:
    viewer_id = subject.id if subject else None
    return [ContentResponse.from_content(c) for c in request.app.state.content_service.list_visible(viewer_id)]


@router.get("/content/mine", response_model=list[ContentResponse])
def my_content(request: Request, subject: Subject = Depends(get_current_subject)) -> list[ContentResponse]:
    return [ContentResponse.from_content(c) for c in request.app.state.content_service.list_for_author(subject.id)]


@router.get("/content/{content_id}", response_model=ContentResponse)
def get_content(
    content_id: int,
    request: Request,
    subject: Optional[Subject] = Depends(try_get_current_subject),
) -> ContentResponse:
    viewer_id = subject.id if subject else None
    return ContentResponse.from_content(request.app.state.content_service.get(content_id, viewer_id))


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@router.post("/content", response_model=ContentResponse, status_code=201)
def create_content(
    request: Request,
    body: ContentCreate,
    response: Response,
    subject: Subject = Depends(get_current_subject),
) -> ContentResponse:
    content = request.app.state.content_service.create(
        audit_actor(request, subject),
        title=body.title,
        body=body.body,
        summary=body.summary,
        tags=body.tags,
    )
    response.headers["Location"] = f"/api/v1/content/{content.id}"
    return ContentResponse.from_content(content)


@router.put("/content/{content_id}", response_model=ContentResponse)
def update_content(
    content_id: int,
    request: Request,
    body: ContentUpdate,
    subject: Subject = Depends(get_current_subject),
) -> ContentResponse:
    content = request.app.state.content_service.update(
        audit_actor(request, subject),
        content_id,
        title=body.title,
        body=body.body,
        summary=body.summary,
        tags=body.tags,
    )
    return ContentResponse.from_content(content)


@router.delete("/content/{content_id}", response_model=MessageResponse)
def delete_content(
    content_id: int, request: Request, subject: Subject = Depends(get_current_subject)
) -> MessageResponse:
    request.app.state.content_service.delete(audit_actor(request, subject), content_id)
    return MessageResponse(message="Content deleted successfully")


@router.post("/content/{content_id}/publish", response_model=ContentResponse)
def publish_content(
    content_id: int, request: Request, subject: Subject = Depends(get_current_subject)
) -> ContentResponse:
    content = request.app.state.content_service.publish(audit_actor(request, subject), content_id)
    return ContentResponse.from_content(content)


@router.post("/content/{content_id}/unpublish", response_model=ContentResponse)
def unpublish_content(
    content_id: int, request: Request, subject: Subject = Depends(get_current_subject)
) -> ContentResponse:
    content = request.app.state.content_service.unpublish(audit_actor(request, subject), content_id)
    return ContentResponse.from_content(content)
