"""
Request and response models for the HTTP API.

Request bodies forbid unknown fields so malformed payloads are rejected
with 422 before they reach a service.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models.entities import RequestStatus


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Generic responses
# ============================================================================

class MessageResponse(BaseModel):
    message: str


class CreatedResponse(BaseModel):
    id: int
    message: str


# ============================================================================
# Auth
# ============================================================================

class LoginRequest(StrictModel):
    email: str
    password: str


class SetupRequest(StrictModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    token: str
    roles: List[str]


class SetupStatus(BaseModel):
    setup_required: bool


# ============================================================================
# Users
# ============================================================================

class UserOut(ORMModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None


class UserCreate(StrictModel):
    email: EmailStr
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role_ids: List[int] = Field(default_factory=list)


class UserUpdate(StrictModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    password: Optional[str] = None


class UserRolesUpdate(StrictModel):
    role_ids: List[int]


# ============================================================================
# Roles, permissions, groups
# ============================================================================

class RoleOut(ORMModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    hierarchy_level: int
    can_grant_access: bool
    can_approve_requests: bool
    is_system_role: bool
    user_count: int = 0


class RoleCreate(StrictModel):
    name: str
    display_name: str
    description: Optional[str] = None
    hierarchy_level: int = 0
    can_grant_access: bool = False
    can_approve_requests: bool = False


class RoleUpdate(StrictModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    hierarchy_level: Optional[int] = None
    can_grant_access: Optional[bool] = None
    can_approve_requests: Optional[bool] = None


class PermissionOut(ORMModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    category: str


class PermissionCreate(StrictModel):
    name: str
    display_name: str
    category: str
    description: Optional[str] = None


class PermissionUpdate(StrictModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None


class PermissionIds(StrictModel):
    permission_ids: List[int]


class GroupOut(ORMModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    member_count: int = 0


class GroupCreate(StrictModel):
    name: str
    display_name: str
    description: Optional[str] = None


class GroupUpdate(StrictModel):
    display_name: Optional[str] = None
    description: Optional[str] = None


class GroupMemberOut(ORMModel):
    group_id: int
    user_id: int
    added_by: Optional[int] = None
    added_at: Optional[datetime] = None


class GroupMembersAdd(StrictModel):
    user_ids: List[int] = Field(min_length=1)


class MeResponse(BaseModel):
    user: UserOut
    roles: List[str]
    groups: List[str]
    permissions: List[str]
    can_approve_requests: bool
    can_grant_access: bool


# ============================================================================
# Tools
# ============================================================================

class ToolOut(ORMModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    category: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool


class ToolCreate(StrictModel):
    name: str
    display_name: str
    description: Optional[str] = None
    category: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool = True


class ToolUpdate(StrictModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None


class ToolApproverOut(ORMModel):
    id: int
    tool_id: int
    user_id: Optional[int] = None
    group_id: Optional[int] = None
    added_by: Optional[int] = None
    added_at: Optional[datetime] = None


class ToolApproverCreate(StrictModel):
    user_id: Optional[int] = None
    group_id: Optional[int] = None


class PrivilegeLevelOut(ORMModel):
    id: int
    access_level: str
    display_name: str
    description: Optional[str] = None
    min_hierarchy_level: int


class PrivilegeLevelUpdate(StrictModel):
    min_hierarchy_level: int
    display_name: Optional[str] = None
    description: Optional[str] = None


# ============================================================================
# Access requests
# ============================================================================

class AccessRequestOut(ORMModel):
    id: int
    user_id: int
    request_type: str
    target_type: str
    target_id: int
    access_level: str
    reason: Optional[str] = None
    duration_minutes: Optional[int] = None
    status: RequestStatus
    approver_id: Optional[int] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    revoked_by: Optional[int] = None
    revoked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AccessRequestCreate(StrictModel):
    target_type: str = "tool"
    target_id: int
    access_level: Optional[str] = None
    reason: Optional[str] = None
    duration_minutes: Optional[int] = None


class ApproveRequest(StrictModel):
    duration_minutes: Optional[int] = None


class RejectRequest(StrictModel):
    reason: str


class DirectGrantRequest(StrictModel):
    user_id: int
    target_type: str = "tool"
    target_id: int
    access_level: Optional[str] = None
    duration_minutes: Optional[int] = None
    reason: Optional[str] = None


class RevokeAccessRequest(StrictModel):
    user_id: int
    target_type: str
    target_id: int


# ============================================================================
# Bulk operations
# ============================================================================

class BulkUserRoles(StrictModel):
    user_ids: List[int]
    role_ids: List[int]


class BulkUserGroups(StrictModel):
    user_ids: List[int]
    group_ids: List[int]


class BulkGroupPermissions(StrictModel):
    group_ids: List[int]
    permission_ids: List[int]


class BulkGrantAccess(StrictModel):
    user_ids: List[int]
    tool_ids: List[int]
    access_level: Optional[str] = None
    duration_minutes: Optional[int] = None


# ============================================================================
# Audit
# ============================================================================

class AuditLogOut(ORMModel):
    id: int
    created_at: Optional[datetime] = None
    actor_id: Optional[int] = None
    action: str
    action_category: str
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    target_name: Optional[str] = None
    details: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLogPage(BaseModel):
    data: List[AuditLogOut]
    total: int
    page: int
    limit: int
    total_pages: int
