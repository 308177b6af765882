"""
api/routes/v1/audit.py -- Read-only access to the audit trail.

Routes:
  GET /audit                      -- filter by table_name / user_id; page_size default 100
  GET /audit/user/{user_id}       -- actions performed by a subject; page_size default 50
  GET /audit/content/{content_id} -- records whose new state is that content item; default 50

All routes require Audit:Read. There is deliberately no write, edit or
delete endpoint here: audit rows are only ever created by the services, in
the transaction of the change they describe.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditRecordResponse
from audit.store import DEFAULT_PAGE_SIZE, SCOPED_PAGE_SIZE
from auth.dependencies import require_permission

# Router-level dependency applies to every route registered on this router.
router = APIRouter(dependencies=[Depends(require_permission("Audit", "Read"))])

_MAX_PAGE_SIZE = 500


def _query(request: Request, **filters) -> list[AuditRecordResponse]:
    with request.app.state.db.unit_of_work() as uow:
        records = uow.audit.query(**filters)
    return [AuditRecordResponse.from_record(r) for r in records]


@router.get("/audit", response_model=list[AuditRecordResponse])
def audit_logs(
    request: Request,
    table_name: Optional[str] = Query(default=None, max_length=100),
    user_id: Optional[int] = Query(default=None),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
) -> list[AuditRecordResponse]:
    return _query(request, table_name=table_name, subject_id=user_id, page_size=page_size)


@router.get("/audit/user/{user_id}", response_model=list[AuditRecordResponse])
def user_audit_logs(
    user_id: int,
    request: Request,
    page_size: int = Query(default=SCOPED_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
) -> list[AuditRecordResponse]:
    return _query(request, subject_id=user_id, page_size=page_size)


@router.get("/audit/content/{content_id}", response_model=list[AuditRecordResponse])
def content_audit_logs(
    content_id: int,
    request: Request,
    page_size: int = Query(default=SCOPED_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
) -> list[AuditRecordResponse]:
    return _query(request, table_name="contents", entity_id=content_id, page_size=page_size)
