"""Audit log query and export endpoints"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from core.audit import AuditFilter, AuditLogger, DEFAULT_PAGE_SIZE
from core.context import ActorContext
from ..dependencies import get_db, require_permission
from ..schemas import AuditLogPage

router = APIRouter(prefix="/api/audit", tags=["audit"])

EXPORT_MEDIA_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
}


def audit_filter(
    action: Optional[str] = None,
    actor_id: Optional[int] = None,
    category: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> AuditFilter:
    return AuditFilter(
        actor_id=actor_id,
        action=action,
        action_category=category,
        target_type=target_type,
        target_id=target_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/logs", response_model=AuditLogPage)
def list_logs(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = "created_at",
    order: str = "desc",
    criteria: AuditFilter = Depends(audit_filter),
    _: ActorContext = Depends(require_permission("audit.read")),
    db: Session = Depends(get_db)
):
    return AuditLogger(db).list(criteria, page=page, limit=limit, sort_by=sort_by, order=order)


@router.get("/categories", response_model=List[str])
def categories(
    _: ActorContext = Depends(require_permission("audit.read")),
    db: Session = Depends(get_db)
):
    return AuditLogger(db).categories()


@router.get("/export")
def export_logs(
    format: str = "json",
    criteria: AuditFilter = Depends(audit_filter),
    _: ActorContext = Depends(require_permission("audit.export")),
    db: Session = Depends(get_db)
):
    """Download the filtered log (newest first, capped) as an attachment"""
    content = AuditLogger(db).export(criteria, format=format)
    return Response(
        content=content,
        media_type=EXPORT_MEDIA_TYPES[format],
        headers={"Content-Disposition": f"attachment; filename=audit_logs_export.{format}"}
    )
