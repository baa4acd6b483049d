"""Role and permission management endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.context import ActorContext
from core.identity import IdentityStore
from ..dependencies import get_db, require_permission
from ..schemas import (
    CreatedResponse, MessageResponse, PermissionCreate, PermissionIds, PermissionOut,
    PermissionUpdate, RoleCreate, RoleOut, RoleUpdate
)

router = APIRouter(prefix="/api/roles", tags=["roles"])
permissions_router = APIRouter(prefix="/api/permissions", tags=["roles"])


def _role_out(role, user_count: int = 0) -> RoleOut:
    out = RoleOut.model_validate(role)
    out.user_count = user_count
    return out


@router.get("", response_model=List[RoleOut])
def list_roles(
    _: ActorContext = Depends(require_permission("roles.read")),
    db: Session = Depends(get_db)
):
    return [_role_out(role, count) for role, count in IdentityStore(db).list_roles()]


@router.get("/hierarchy", response_model=List[RoleOut])
def role_hierarchy(
    _: ActorContext = Depends(require_permission("roles.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).role_hierarchy()


@router.post("", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def create_role(
    payload: RoleCreate,
    actor: ActorContext = Depends(require_permission("roles.create")),
    db: Session = Depends(get_db)
):
    role = IdentityStore(db).create_role(actor, **payload.model_dump())
    db.commit()
    return {"id": role.id, "message": "Role created successfully"}


@router.get("/{role_id}", response_model=RoleOut)
def get_role(
    role_id: int,
    _: ActorContext = Depends(require_permission("roles.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).get_role(role_id)


@router.put("/{role_id}", response_model=MessageResponse)
def update_role(
    role_id: int,
    payload: RoleUpdate,
    actor: ActorContext = Depends(require_permission("roles.update")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).update_role(actor, role_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return {"message": "Role updated successfully"}


@router.delete("/{role_id}", response_model=MessageResponse)
def delete_role(
    role_id: int,
    actor: ActorContext = Depends(require_permission("roles.delete")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).delete_role(actor, role_id)
    db.commit()
    return {"message": "Role deleted successfully"}


@router.get("/{role_id}/permissions", response_model=List[PermissionOut])
def get_role_permissions(
    role_id: int,
    _: ActorContext = Depends(require_permission("roles.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).get_role_permissions(role_id)


@router.put("/{role_id}/permissions", response_model=List[PermissionOut])
def set_role_permissions(
    role_id: int,
    payload: PermissionIds,
    actor: ActorContext = Depends(require_permission("permissions.manage")),
    db: Session = Depends(get_db)
):
    store = IdentityStore(db)
    store.set_role_permissions(actor, role_id, payload.permission_ids)
    db.commit()
    return store.get_role_permissions(role_id)


@permissions_router.get("", response_model=List[PermissionOut])
def list_permissions(
    category: Optional[str] = None,
    _: ActorContext = Depends(require_permission("roles.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).list_permissions(category)


@permissions_router.get("/categories", response_model=List[str])
def permission_categories(
    _: ActorContext = Depends(require_permission("roles.read")),
    db: Session = Depends(get_db)
):
    return IdentityStore(db).permission_categories()


@permissions_router.post("", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def create_permission(
    payload: PermissionCreate,
    actor: ActorContext = Depends(require_permission("permissions.manage")),
    db: Session = Depends(get_db)
):
    perm = IdentityStore(db).create_permission(actor, **payload.model_dump())
    db.commit()
    return {"id": perm.id, "message": "Permission created successfully"}


@permissions_router.put("/{permission_id}", response_model=MessageResponse)
def update_permission(
    permission_id: int,
    payload: PermissionUpdate,
    actor: ActorContext = Depends(require_permission("permissions.manage")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).update_permission(actor, permission_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return {"message": "Permission updated successfully"}


@permissions_router.delete("/{permission_id}", response_model=MessageResponse)
def delete_permission(
    permission_id: int,
    actor: ActorContext = Depends(require_permission("permissions.manage")),
    db: Session = Depends(get_db)
):
    IdentityStore(db).delete_permission(actor, permission_id)
    db.commit()
    return {"message": "Permission deleted successfully"}
