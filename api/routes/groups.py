"""Group management endpoints"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.context import ActorContext
from core.identity import IdentityStore
from ..dependencies import get_db, require_permission
from ..schemas import (
    CreatedResponse, GroupCreate, GroupMemberOut, GroupMembersAdd, GroupOut,
    GroupUpdate, MessageResponse, PermissionIds, PermissionOut
)

router = APIRouter(prefix="/api/groups", tags=["groups"])


@router.get("", response_model=List[GroupOut])
def list_groups(
    _: ActorContext = Depends(require_permission("groups.read")),
    db: Session = Depends(get_db)
):
    result = []
    for group, member_count in IdentityStore(db).list_groups():
        out = GroupOut.model_validate(group)
        out.member_count = member_count
        result.append(out)
    return result


@router.post("", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupCreate,
    actor: ActorContext = Depends(require_permission("groups.create")),
    db: Session = Depends(get_db)
):
    group = IdentityStore(db).create_group(actor, **payload.model_dump())
    db.commit()
    return {"id": group.id, "message": "Group created successfully"}


@router.get("/{group_id}", response_model=GroupOut)
def get_group(
    group_id: int,
    _: ActorContext = Depends(require_permission("groups.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).get_group(group_id)


@router.put("/{group_id}", response_model=MessageResponse)
def update_group(
    group_id: int,
    payload: GroupUpdate,
    actor: ActorContext = Depends(require_permission("groups.update")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).update_group(actor, group_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return {"message": "Group updated successfully"}


@router.delete("/{group_id}", response_model=MessageResponse)
def delete_group(
    group_id: int,
    actor: ActorContext = Depends(require_permission("groups.delete")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).delete_group(actor, group_id)
    db.commit()
    return {"message": "Group deleted successfully"}


@router.get("/{group_id}/members", response_model=List[GroupMemberOut])
def list_members(
    group_id: int,
    _: ActorContext = Depends(require_permission("groups.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).list_members(group_id)


@router.post("/{group_id}/members")
def add_members(
    group_id: int,
    payload: GroupMembersAdd,
    actor: ActorContext = Depends(require_permission("groups.manage_members")),
    db: Session = Depends(get_db)
):
    added = IdentityStore(db).add_members(actor, group_id, payload.user_ids)
    db.commit()
    return {"message": "Members added successfully", "added": added}


@router.delete("/{group_id}/members/{user_id}", response_model=MessageResponse)
def remove_member(
    group_id: int,
    user_id: int,
    actor: ActorContext = Depends(require_permission("groups.manage_members")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).remove_member(actor, group_id, user_id)
    db.commit()
    return {"message": "Member removed successfully"}


@router.get("/{group_id}/permissions", response_model=List[PermissionOut])
def get_group_permissions(
    group_id: int,
    _: ActorContext = Depends(require_permission("groups.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).get_group_permissions(group_id)


@router.put("/{group_id}/permissions", response_model=List[PermissionOut])
def set_group_permissions(
    group_id: int,
    payload: PermissionIds,
    actor: ActorContext = Depends(require_permission("permissions.manage")),
    db: Session = Depends(get_db)
):
    store = IdentityStore(db)
    store.set_group_permissions(actor, group_id, payload.permission_ids)
    db.commit()
    return store.get_group_permissions(group_id)
