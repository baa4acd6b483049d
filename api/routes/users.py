"""User administration endpoints"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.context import ActorContext
from core.identity import IdentityStore
from ..dependencies import get_db, require_permission
from ..schemas import CreatedResponse, MessageResponse, UserCreate, UserOut, UserRolesUpdate, UserUpdate

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=List[UserOut])
def list_users(
    active_only: bool = False,
    _: ActorContext = Depends(require_permission("users.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).list_users(active_only=active_only)


@router.post("", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    actor: ActorContext = Depends(require_permission("users.create")),
    db: Session = Depends(get_db)
):
    user = IdentityStore(db).create_user(actor, **payload.model_dump())
    db.commit()
    return {"id": user.id, "message": "User created successfully"}


@router.get("/{user_id}")
def get_user(
    user_id: int,
    _: ActorContext = Depends(require_permission("users.read")),
    db: Session = Depends(get_db)
):
    summary = IdentityStore(db).user_summary(user_id)
    return {
        "user": UserOut.model_validate(summary["user"]),
        "roles": [role.name for role in summary["roles"]],
        "groups": [group.name for group in summary["groups"]],
        "permissions": summary["permissions"],
    }


@router.put("/{user_id}", response_model=MessageResponse)
def update_user(
    user_id: int,
    payload: UserUpdate,
    actor: ActorContext = Depends(require_permission("users.update")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).update_user(actor, user_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return {"message": "User updated successfully"}


@router.post("/{user_id}/deactivate", response_model=MessageResponse)
def deactivate_user(
    user_id: int,
    actor: ActorContext = Depends(require_permission("users.delete")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).deactivate_user(actor, user_id)
    db.commit()
    return {"message": "User deactivated successfully"}


@router.put("/{user_id}/roles", response_model=MessageResponse)
def set_user_roles(
    user_id: int,
    payload: UserRolesUpdate,
    actor: ActorContext = Depends(require_permission("roles.assign")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).set_user_roles(actor, user_id, payload.role_ids)
    db.commit()
    return {"message": "User roles updated successfully"}
