# AccessHub - Database Models
# Identity, tool catalog, access requests and audit trail

from .database import Base, get_session, init_db, reset_db, configure_engine
from .entities import (
    User,
    Role,
    Permission,
    Group,
    UserRole,
    RolePermission,
    GroupMember,
    GroupPermission,
    Tool,
    ToolApprover,
    PrivilegeLevel,
    AccessRequest,
    AuditLog,
    RequestStatus,
    ALLOWED_TRANSITIONS,
    utcnow
)

__all__ = [
    'Base',
    'get_session',
    'init_db',
    'reset_db',
    'configure_engine',
    'User',
    'Role',
    'Permission',
    'Group',
    'UserRole',
    'RolePermission',
    'GroupMember',
    'GroupPermission',
    'Tool',
    'ToolApprover',
    'PrivilegeLevel',
    'AccessRequest',
    'AuditLog',
    'RequestStatus',
    'ALLOWED_TRANSITIONS',
    'utcnow'
]
