"""Access request endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.context import ActorContext
from core.workflow import AccessWorkflow
from models.entities import RequestStatus
from ..dependencies import get_actor, get_db, require_permission
from ..schemas import (
    AccessRequestCreate, AccessRequestOut, ApproveRequest, CreatedResponse,
    DirectGrantRequest, MessageResponse, RejectRequest, RevokeAccessRequest
)

router = APIRouter(prefix="/api/access", tags=["access"])


@router.post("/request", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def create_request(
    payload: AccessRequestCreate,
    actor: ActorContext = Depends(require_permission("access.request")),
    db: Session = Depends(get_db)
):
    request = AccessWorkflow(db).create_access_request(
        actor,
        payload.target_type,
        payload.target_id,
        access_level=payload.access_level,
        reason=payload.reason,
        duration_minutes=payload.duration_minutes
    )
    db.commit()
    return {"id": request.id, "message": "Access request submitted successfully"}


@router.get("/my-requests", response_model=List[AccessRequestOut])
def my_requests(actor: ActorContext = Depends(get_actor), db: Session = Depends(get_db)):
    return AccessWorkflow(db).my_requests(actor)


@router.get("/requests", response_model=List[AccessRequestOut])
def list_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    user_id: Optional[int] = None,
    target_type: Optional[str] = None,
    limit: int = 100,
    _: ActorContext = Depends(require_permission("access.approve")),
    db: Session = Depends(get_db)
):
    return AccessWorkflow(db).list_requests(status_filter, user_id, target_type, limit)


@router.get("/requests/pending", response_model=List[AccessRequestOut])
def pending_requests(actor: ActorContext = Depends(get_actor), db: Session = Depends(get_db)):
    """Requests the caller is allowed to decide"""
    return AccessWorkflow(db).pending_for(actor)


@router.post("/requests/{request_id}/approve", response_model=MessageResponse)
def approve_request(
    request_id: int,
    payload: Optional[ApproveRequest] = None,
    actor: ActorContext = Depends(require_permission("access.approve")),
    db: Session = Depends(get_db)
):
    duration = payload.duration_minutes if payload else None
    AccessWorkflow(db).approve_request(actor, request_id, duration)
    db.commit()
    return {"message": "Request approved successfully"}


@router.post("/requests/{request_id}/reject", response_model=MessageResponse)
def reject_request(
    request_id: int,
    payload: RejectRequest,
    actor: ActorContext = Depends(require_permission("access.reject")),
    db: Session = Depends(get_db)
):
    AccessWorkflow(db).reject_request(actor, request_id, payload.reason)
    db.commit()
    return {"message": "Request rejected successfully"}


@router.post("/requests/{request_id}/revoke", response_model=MessageResponse)
def revoke_request(
    request_id: int,
    actor: ActorContext = Depends(require_permission("access.revoke")),
    db: Session = Depends(get_db)
):
    AccessWorkflow(db).revoke_request(actor, request_id)
    db.commit()
    return {"message": "Access revoked successfully"}


@router.post("/grant", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def direct_grant(
    payload: DirectGrantRequest,
    actor: ActorContext = Depends(require_permission("access.grant")),
    db: Session = Depends(get_db)
):
    request = AccessWorkflow(db).direct_grant(
        actor,
        payload.user_id,
        payload.target_type,
        payload.target_id,
        access_level=payload.access_level,
        duration_minutes=payload.duration_minutes,
        reason=payload.reason
    )
    db.commit()
    return {"id": request.id, "message": "Access granted successfully"}


@router.post("/revoke")
def revoke_access(
    payload: RevokeAccessRequest,
    actor: ActorContext = Depends(require_permission("access.revoke")),
    db: Session = Depends(get_db)
):
    revoked = AccessWorkflow(db).revoke_access(actor, payload.user_id, payload.target_type, payload.target_id)
    db.commit()
    return {"message": "Access revoked successfully", "revoked": revoked}


@router.get("/users/{user_id}/grants", response_model=List[AccessRequestOut])
def active_grants(
    user_id: int,
    _: ActorContext = Depends(require_permission("users.read")),
    db: Session = Depends(get_db)
):
    return AccessWorkflow(db).active_grants(user_id)
