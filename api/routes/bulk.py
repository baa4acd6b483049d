"""
Bulk operations

Each endpoint applies its pairs independently: unknown ids are skipped and
reported in ``failed`` while the remaining pairs persist.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.context import ActorContext
from core.identity import IdentityStore
from core.workflow import AccessWorkflow
from ..dependencies import get_db, require_permission
from ..schemas import BulkGrantAccess, BulkGroupPermissions, BulkUserGroups, BulkUserRoles

router = APIRouter(prefix="/api/bulk", tags=["bulk"])


@router.post("/users/roles")
def bulk_assign_roles(
    payload: BulkUserRoles,
    actor: ActorContext = Depends(require_permission("roles.assign")),
    db: Session = Depends(get_db)
):
    result = IdentityStore(db).bulk_assign_roles(actor, payload.user_ids, payload.role_ids)
    db.commit()
    return {
        "message": "Roles assigned successfully",
        "count": result.count,
        "assignments": result.count,
        "failed": result.failed,
        "users_affected": len(payload.user_ids),
    }


@router.delete("/users/roles")
def bulk_remove_roles(
    payload: BulkUserRoles,
    actor: ActorContext = Depends(require_permission("roles.assign")),
    db: Session = Depends(get_db)
):
    result = IdentityStore(db).bulk_remove_roles(actor, payload.user_ids, payload.role_ids)
    db.commit()
    return {
        "message": "Roles removed successfully",
        "count": result.count,
        "removals": result.count,
        "failed": result.failed,
        "users_affected": len(payload.user_ids),
    }


@router.post("/users/groups")
def bulk_add_to_groups(
    payload: BulkUserGroups,
    actor: ActorContext = Depends(require_permission("groups.manage_members")),
    db: Session = Depends(get_db)
):
    result = IdentityStore(db).bulk_add_to_groups(actor, payload.user_ids, payload.group_ids)
    db.commit()
    return {
        "message": "Users added to groups successfully",
        "count": result.count,
        "memberships": result.count,
        "failed": result.failed,
        "users_affected": len(payload.user_ids),
    }


@router.post("/groups/permissions")
def bulk_assign_group_permissions(
    payload: BulkGroupPermissions,
    actor: ActorContext = Depends(require_permission("permissions.manage")),
    db: Session = Depends(get_db)
):
    result = IdentityStore(db).bulk_assign_group_permissions(actor, payload.group_ids, payload.permission_ids)
    db.commit()
    return {
        "message": "Permissions assigned successfully",
        "count": result.count,
        "assignments": result.count,
        "failed": result.failed,
        "groups_affected": len(payload.group_ids),
    }


@router.post("/access/grant")
def bulk_grant_access(
    payload: BulkGrantAccess,
    actor: ActorContext = Depends(require_permission("access.grant")),
    db: Session = Depends(get_db)
):
    result = AccessWorkflow(db).bulk_grant_access(
        actor, payload.user_ids, payload.tool_ids, payload.access_level, payload.duration_minutes
    )
    db.commit()
    return {
        "message": "Access granted successfully",
        "count": result.count,
        "grants": result.count,
        "failed": result.failed,
        "users_affected": len(payload.user_ids),
    }
