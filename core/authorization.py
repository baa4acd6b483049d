"""
Authorization Resolver
======================

Answers "may this actor do this to that target?" for the access workflow and
the admin API. Every check is a read-only query: nothing here mutates state,
so a check may be evaluated any number of times before an operation.

Rules:
- Capabilities come from roles (can_approve_requests, can_grant_access)
- Permissions are the union of role permissions and group permissions
- Approval needs an approving role, a listing as the tool's approver
  (directly or through a group), and enough hierarchy for the requested
  access level; nobody may approve their own request
- Inactive users are denied everything
"""

from typing import List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.entities import (
    User, Role, Permission, UserRole, RolePermission,
    GroupMember, GroupPermission, ToolApprover, PrivilegeLevel, AccessRequest
)


class AuthorizationResolver:
    """
    Decision engine combining role capabilities, the role hierarchy,
    group membership and the tool approver mapping.
    """

    def __init__(self, session: Session):
        """
        Initialize the resolver with a database session.

        Args:
            session: SQLAlchemy session for read queries
        """
        self.session = session

    # ------------------------------------------------------------------
    # Identity lookups
    # ------------------------------------------------------------------

    def active_user(self, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        user = self.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    def get_user_roles(self, user_id: int) -> List[Role]:
        """All roles directly assigned to a user, highest hierarchy first."""
        return (
            self.session.query(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(UserRole.user_id == user_id)
            .order_by(Role.hierarchy_level.desc())
            .all()
        )

    def get_user_group_ids(self, user_id: int) -> Set[int]:
        rows = self.session.query(GroupMember.group_id).filter(GroupMember.user_id == user_id).all()
        return {row[0] for row in rows}

    def max_hierarchy_level(self, user_id: int, approving_only: bool = False) -> int:
        """
        Highest hierarchy level among the user's roles (0 if none).

        Args:
            user_id: User to inspect
            approving_only: Only consider roles with can_approve_requests
        """
        query = (
            self.session.query(func.max(Role.hierarchy_level))
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(UserRole.user_id == user_id)
        )
        if approving_only:
            query = query.filter(Role.can_approve_requests.is_(True))
        return query.scalar() or 0

    def effective_permissions(self, user_id: int) -> Set[str]:
        """
        Permission names a user holds through roles or groups (union).

        Args:
            user_id: The user ID to get permissions for

        Returns:
            Set of permission names; empty for unknown or inactive users
        """
        if self.active_user(user_id) is None:
            return set()

        via_roles = (
            self.session.query(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(UserRole, UserRole.role_id == RolePermission.role_id)
            .filter(UserRole.user_id == user_id)
        )
        via_groups = (
            self.session.query(Permission.name)
            .join(GroupPermission, GroupPermission.permission_id == Permission.id)
            .join(GroupMember, GroupMember.group_id == GroupPermission.group_id)
            .filter(GroupMember.user_id == user_id)
        )
        return {row[0] for row in via_roles.union(via_groups).all()}

    def has_permission(self, user_id: Optional[int], permission_name: str) -> bool:
        return permission_name in self.effective_permissions(user_id) if user_id else False

    # ------------------------------------------------------------------
    # Capability checks
    # ------------------------------------------------------------------

    def can_grant(self, user_id: Optional[int]) -> bool:
        """True if any of the user's roles has can_grant_access."""
        if self.active_user(user_id) is None:
            return False
        return any(role.can_grant_access for role in self.get_user_roles(user_id))

    def can_approve_any(self, user_id: Optional[int]) -> bool:
        """True if any of the user's roles has can_approve_requests."""
        if self.active_user(user_id) is None:
            return False
        return any(role.can_approve_requests for role in self.get_user_roles(user_id))

    @staticmethod
    def can_delete(role: Role) -> bool:
        return not role.is_system_role

    def is_tool_approver(self, user_id: int, tool_id: int) -> bool:
        """Whether the user is listed as an approver of the tool, directly or via a group."""
        direct = self.session.query(ToolApprover.id).filter(
            ToolApprover.tool_id == tool_id,
            ToolApprover.user_id == user_id
        ).first()
        if direct is not None:
            return True

        group_ids = self.get_user_group_ids(user_id)
        if not group_ids:
            return False
        via_group = self.session.query(ToolApprover.id).filter(
            ToolApprover.tool_id == tool_id,
            ToolApprover.group_id.in_(group_ids)
        ).first()
        return via_group is not None

    def required_hierarchy_level(self, access_level: str) -> Optional[int]:
        """Threshold configured for an access level, or None if unmapped."""
        level = self.session.query(PrivilegeLevel).filter(
            PrivilegeLevel.access_level == access_level
        ).first()
        return level.min_hierarchy_level if level else None

    def can_approve(self, user_id: Optional[int], request: AccessRequest) -> bool:
        """
        Whether the user may approve or reject a request.

        Self-approval is refused before anything else is considered. An
        access level with no configured threshold is never approvable.
        """
        if user_id is None or user_id == request.user_id:
            return False
        if not self.can_approve_any(user_id):
            return False

        if request.target_type != 'tool' or not self.is_tool_approver(user_id, request.target_id):
            return False

        required = self.required_hierarchy_level(request.access_level)
        if required is None:
            return False
        return self.max_hierarchy_level(user_id, approving_only=True) >= required
