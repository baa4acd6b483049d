"""
Entity Models for AccessHub
===========================

Data model for the access-governance backend:

Identity:
- Users: people who request and approve access
- Roles: named authority levels with a hierarchy level and capability flags
- Permissions: atomic capabilities grouped by category
- Groups: collections of users, optionally carrying their own permissions

Access:
- Tools: requestable resources in the catalog
- Tool approvers: which users/groups may approve requests for a tool
- Privilege levels: access level -> minimum approver hierarchy level
- Access requests: the request lifecycle (PENDING -> APPROVED/REJECTED ...)

Audit:
- Audit logs: append-only record of every state-changing action
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean,
    ForeignKey, Text, Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RequestStatus(enum.Enum):
    """Lifecycle states of an access request."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


# Allowed forward edges of the request state machine
ALLOWED_TRANSITIONS = {
    RequestStatus.PENDING: {RequestStatus.APPROVED, RequestStatus.REJECTED},
    RequestStatus.APPROVED: {RequestStatus.REVOKED, RequestStatus.EXPIRED},
    RequestStatus.REJECTED: set(),
    RequestStatus.REVOKED: set(),
    RequestStatus.EXPIRED: set(),
}


# ============================================================================
# Identity Models
# ============================================================================

class User(Base):
    """
    User entity representing an identity in the system.

    Users are deactivated, never deleted, so that access requests and
    audit rows keep pointing at a real row.
    """
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255))  # BCrypt hash
    first_name = Column(String(100))
    last_name = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    roles = relationship("UserRole", back_populates="user", foreign_keys="UserRole.user_id")
    memberships = relationship("GroupMember", back_populates="user", foreign_keys="GroupMember.user_id")

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"


class Role(Base):
    """
    Role entity: a named authority level.

    ``hierarchy_level`` orders roles by authority (higher = more). The two
    capability flags decide whether holders may approve requests and grant
    access directly. System roles cannot be deleted.
    """
    __tablename__ = 'roles'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    description = Column(Text)
    hierarchy_level = Column(Integer, default=0, nullable=False)
    can_grant_access = Column(Boolean, default=False, nullable=False)
    can_approve_requests = Column(Boolean, default=False, nullable=False)
    is_system_role = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    users = relationship("UserRole", back_populates="role", cascade="all, delete-orphan")
    permissions = relationship("RolePermission", back_populates="role", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Role(id={self.id}, name='{self.name}', level={self.hierarchy_level})>"


class Permission(Base):
    """
    Permission entity: an atomic capability such as ``tools.create``.

    ``category`` groups permissions for display only.
    """
    __tablename__ = 'permissions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(50), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    roles = relationship("RolePermission", back_populates="permission")
    groups = relationship("GroupPermission", back_populates="permission")

    def __repr__(self):
        return f"<Permission(id={self.id}, name='{self.name}')>"


class Group(Base):
    """User group, optionally carrying a direct permission grant."""
    __tablename__ = 'user_groups'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")
    permissions = relationship("GroupPermission", back_populates="group", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Group(id={self.id}, name='{self.name}')>"


# ============================================================================
# Identity Junction Tables
# ============================================================================

class UserRole(Base):
    """Association between users and roles, with who granted it."""
    __tablename__ = 'user_roles'
    __table_args__ = (UniqueConstraint('user_id', 'role_id', name='uq_user_role'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey('roles.id'), nullable=False, index=True)
    granted_by = Column(Integer, ForeignKey('users.id'))
    granted_at = Column(DateTime, default=utcnow)

    # Relationships
    user = relationship("User", back_populates="roles", foreign_keys=[user_id])
    role = relationship("Role", back_populates="users")

    def __repr__(self):
        return f"<UserRole(user_id={self.user_id}, role_id={self.role_id})>"


class RolePermission(Base):
    """Association between roles and permissions."""
    __tablename__ = 'role_permissions'
    __table_args__ = (UniqueConstraint('role_id', 'permission_id', name='uq_role_permission'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(Integer, ForeignKey('roles.id'), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey('permissions.id'), nullable=False)
    granted_at = Column(DateTime, default=utcnow)

    # Relationships
    role = relationship("Role", back_populates="permissions")
    permission = relationship("Permission", back_populates="roles")

    def __repr__(self):
        return f"<RolePermission(role_id={self.role_id}, permission_id={self.permission_id})>"


class GroupMember(Base):
    """
    Group membership row.

    Keeps who added the member and when, so membership provenance
    survives in the table itself and not only in the audit log.
    """
    __tablename__ = 'user_group_members'
    __table_args__ = (UniqueConstraint('group_id', 'user_id', name='uq_group_member'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey('user_groups.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    added_by = Column(Integer, ForeignKey('users.id'))
    added_at = Column(DateTime, default=utcnow)

    # Relationships
    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships", foreign_keys=[user_id])

    def __repr__(self):
        return f"<GroupMember(group_id={self.group_id}, user_id={self.user_id})>"


class GroupPermission(Base):
    """Association between groups and permissions."""
    __tablename__ = 'group_permissions'
    __table_args__ = (UniqueConstraint('group_id', 'permission_id', name='uq_group_permission'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey('user_groups.id'), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey('permissions.id'), nullable=False)
    granted_at = Column(DateTime, default=utcnow)

    # Relationships
    group = relationship("Group", back_populates="permissions")
    permission = relationship("Permission", back_populates="groups")

    def __repr__(self):
        return f"<GroupPermission(group_id={self.group_id}, permission_id={self.permission_id})>"


# ============================================================================
# Tool Catalog
# ============================================================================

class Tool(Base):
    """
    A requestable resource in the catalog.

    ``name`` is an immutable slug. Tools are deactivated rather than deleted
    once requests reference them.
    """
    __tablename__ = 'tools'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(100), index=True)
    icon = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    approvers = relationship("ToolApprover", back_populates="tool", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Tool(id={self.id}, name='{self.name}', active={self.is_active})>"


class ToolApprover(Base):
    """
    Approver mapping for a tool: exactly one of user_id / group_id is set.

    Holding an approving role is not enough to approve a request; the
    approver must also be listed here, directly or through a group.
    """
    __tablename__ = 'tool_approvers'
    __table_args__ = (
        UniqueConstraint('tool_id', 'user_id', 'group_id', name='uq_tool_approver'),
        CheckConstraint(
            '(user_id IS NULL) != (group_id IS NULL)',
            name='ck_tool_approver_single_subject'
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tool_id = Column(Integer, ForeignKey('tools.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'))
    group_id = Column(Integer, ForeignKey('user_groups.id'))
    added_by = Column(Integer, ForeignKey('users.id'))
    added_at = Column(DateTime, default=utcnow)

    # Relationships
    tool = relationship("Tool", back_populates="approvers")
    user = relationship("User", foreign_keys=[user_id])
    group = relationship("Group")

    def __repr__(self):
        subject = f"user_id={self.user_id}" if self.user_id else f"group_id={self.group_id}"
        return f"<ToolApprover(tool_id={self.tool_id}, {subject})>"


class PrivilegeLevel(Base):
    """
    Maps an access level string (read/write/admin...) to the minimum
    hierarchy level an approver needs to approve it.
    """
    __tablename__ = 'privilege_levels'

    id = Column(Integer, primary_key=True, autoincrement=True)
    access_level = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    description = Column(Text)
    min_hierarchy_level = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<PrivilegeLevel('{self.access_level}' >= {self.min_hierarchy_level})>"


# ============================================================================
# Access Requests
# ============================================================================

class AccessRequest(Base):
    """
    Central entity of the workflow.

    Mutated only by the access workflow through compare-and-set updates on
    ``status``; never deleted. ``expires_at`` is set only on approval when a
    duration applies.
    """
    __tablename__ = 'access_requests'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    request_type = Column(String(50), nullable=False, default='tool_access')
    target_type = Column(String(50), nullable=False)
    target_id = Column(Integer, nullable=False)
    access_level = Column(String(50), nullable=False)
    reason = Column(Text)
    duration_minutes = Column(Integer)  # NULL = permanent
    status = Column(SQLEnum(RequestStatus), nullable=False, default=RequestStatus.PENDING, index=True)

    approver_id = Column(Integer, ForeignKey('users.id'))
    approved_by = Column(Integer, ForeignKey('users.id'))
    approved_at = Column(DateTime)
    rejected_by = Column(Integer, ForeignKey('users.id'))
    rejected_at = Column(DateTime)
    rejection_reason = Column(Text)
    revoked_by = Column(Integer, ForeignKey('users.id'))
    revoked_at = Column(DateTime)
    expires_at = Column(DateTime, index=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])

    def __repr__(self):
        return (f"<AccessRequest(id={self.id}, user_id={self.user_id}, "
                f"{self.target_type}:{self.target_id}, status={self.status.value})>")


# ============================================================================
# Audit Logging
# ============================================================================

class AuditLog(Base):
    """
    Append-only audit fact, written in the same transaction as the change
    it records. ``actor_id`` NULL means the system (e.g. expiry sweep).
    """
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    # Who
    actor_id = Column(Integer, ForeignKey('users.id'), index=True)

    # What
    action = Column(String(100), nullable=False, index=True)
    action_category = Column(String(50), nullable=False, index=True)
    target_type = Column(String(50))
    target_id = Column(Integer)
    target_name = Column(String(255))
    details = Column(Text)
    old_value = Column(Text)  # JSON
    new_value = Column(Text)  # JSON

    # Context
    ip_address = Column(String(45))  # IPv4 or IPv6
    user_agent = Column(String(255))

    # Relationships
    actor = relationship("User")

    def __repr__(self):
        return f"<AuditLog(id={self.id}, actor_id={self.actor_id}, action='{self.action}')>"
