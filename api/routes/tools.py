"""Tool catalog, approver mapping and privilege level endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.context import ActorContext
from core.exceptions import NotFoundError
from core.tools import ToolRegistry
from ..dependencies import get_db, require_permission
from ..schemas import (
    CreatedResponse, MessageResponse, PrivilegeLevelOut, PrivilegeLevelUpdate,
    ToolApproverCreate, ToolApproverOut, ToolCreate, ToolOut, ToolUpdate
)

router = APIRouter(prefix="/api/tools", tags=["tools"])
privilege_router = APIRouter(prefix="/api/privilege-levels", tags=["tools"])


@router.get("", response_model=List[ToolOut])
def list_tools(
    category: Optional[str] = None,
    active_only: bool = False,
    _: ActorContext = Depends(require_permission("tools.read")),
    db: Session = Depends(get_db)
):
    return ToolRegistry(db).list(category=category, active_only=active_only)


@router.get("/categories", response_model=List[str])
def tool_categories(
    _: ActorContext = Depends(require_permission("tools.read")),
    db: Session = Depends(get_db)
):
    return ToolRegistry(db).categories()


@router.post("", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def create_tool(
    payload: ToolCreate,
    actor: ActorContext = Depends(require_permission("tools.create")),
    db: Session = Depends(get_db)
):
    tool = ToolRegistry(db).create(actor, **payload.model_dump())
    db.commit()
    return {"id": tool.id, "message": "Tool created successfully"}


@router.get("/{tool_id}", response_model=ToolOut)
def get_tool(
    tool_id: int,
    _: ActorContext = Depends(require_permission("tools.read")),
    db: Session = Depends(get_db)
):
    return ToolRegistry(db).get(tool_id)


@router.put("/{tool_id}", response_model=MessageResponse)
def update_tool(
    tool_id: int,
    payload: ToolUpdate,
    actor: ActorContext = Depends(require_permission("tools.update")),
    db: Session = Depends(get_db)
):
    ToolRegistry(db).update(actor, tool_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return {"message": "Tool updated successfully"}


@router.delete("/{tool_id}", response_model=MessageResponse)
def delete_tool(
    tool_id: int,
    actor: ActorContext = Depends(require_permission("tools.delete")),
    db: Session = Depends(get_db)
):
    ToolRegistry(db).delete(actor, tool_id)
    db.commit()
    return {"message": "Tool deleted successfully"}


@router.get("/{tool_id}/approvers", response_model=List[ToolApproverOut])
def list_approvers(
    tool_id: int,
    _: ActorContext = Depends(require_permission("tools.read")),
    db: Session = Depends(get_db)
):
    return ToolRegistry(db).list_approvers(tool_id)


@router.post("/{tool_id}/approvers", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def add_approver(
    tool_id: int,
    payload: ToolApproverCreate,
    actor: ActorContext = Depends(require_permission("tools.manage_access")),
    db: Session = Depends(get_db)
):
    approver = ToolRegistry(db).add_approver(actor, tool_id, payload.user_id, payload.group_id)
    db.commit()
    return {"id": approver.id, "message": "Approver added successfully"}


@router.delete("/{tool_id}/approvers/{approver_id}", response_model=MessageResponse)
def remove_approver(
    tool_id: int,
    approver_id: int,
    actor: ActorContext = Depends(require_permission("tools.manage_access")),
    db: Session = Depends(get_db)
):
    ToolRegistry(db).remove_approver(actor, tool_id, approver_id)
    db.commit()
    return {"message": "Approver removed successfully"}


@privilege_router.get("", response_model=List[PrivilegeLevelOut])
def list_privilege_levels(
    _: ActorContext = Depends(require_permission("tools.read")),
    db: Session = Depends(get_db)
):
    return ToolRegistry(db).list_privilege_levels()


@privilege_router.get("/{access_level}", response_model=PrivilegeLevelOut)
def get_privilege_level(
    access_level: str,
    _: ActorContext = Depends(require_permission("tools.read")),
    db: Session = Depends(get_db)
):
    level = ToolRegistry(db).get_privilege_level(access_level)
    if level is None:
        raise NotFoundError("Privilege level")
    return level


@privilege_router.put("/{access_level}", response_model=PrivilegeLevelOut)
def set_privilege_level(
    access_level: str,
    payload: PrivilegeLevelUpdate,
    actor: ActorContext = Depends(require_permission("tools.manage_access")),
    db: Session = Depends(get_db)
):
    level = ToolRegistry(db).set_privilege_level(
        actor,
        access_level,
        payload.min_hierarchy_level,
        display_name=payload.display_name,
        description=payload.description
    )
    db.commit()
    return level
