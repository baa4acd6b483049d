"""
Identity & Role Store
=====================

Users, roles, permissions and groups, plus the assignments between them.

Rules enforced here:
- Users are deactivated, never deleted
- System roles cannot be deleted, nor have their hierarchy level lowered
  below the configured floor; a role still held by a user cannot be deleted
- Role and group permission sets are replaced whole, inside one transaction
- Group membership changes are idempotent and audited only when they
  actually change something
- Bulk operations apply per pair: an unknown id skips that pair only

Every mutation records its audit row through the same session, so the
caller's transaction commits both or neither.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.entities import (
    User, Role, Permission, Group, UserRole, RolePermission,
    GroupMember, GroupPermission, ToolApprover, AccessRequest
)
from .audit import AuditLogger
from .authorization import AuthorizationResolver
from .config import settings
from .context import ActorContext
from .exceptions import (
    AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
)
from .security import create_access_token, hash_password, verify_password
from .validators import (
    normalize_email, validate_password, validate_required, validate_slug
)

logger = logging.getLogger(__name__)

SUPER_ADMIN_ROLE = "super_admin"


@dataclass
class BulkResult:
    """Outcome of a bulk operation: pairs that changed state and pairs that failed."""
    count: int = 0
    failed: int = 0


class IdentityStore:
    """
    Service for identity data: users, roles, permissions and groups.

    Provides:
    - First-run setup and login
    - CRUD for users, roles, permissions and groups
    - Role assignment and group membership
    - Bulk assignment with partial-failure semantics
    """

    def __init__(self, session: Session):
        """
        Initialize the store with a database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session
        self.audit = AuditLogger(session)
        self.resolver = AuthorizationResolver(session)

    # ========================================================================
    # Setup & Authentication
    # ========================================================================

    def check_setup(self) -> Dict[str, bool]:
        """The system needs setup while it has no users."""
        return {'setup_required': self.session.query(User.id).first() is None}

    def setup(self, email: str, password: str, ctx: ActorContext) -> Dict[str, Any]:
        """
        Create the first user as super admin.

        Only allowed while no user exists.

        Returns:
            Dictionary with token, roles and user_id
        """
        if not self.check_setup()['setup_required']:
            raise AuthorizationError("system already initialized")

        email = normalize_email(email)
        validate_password(password)

        role = self.session.query(Role).filter(Role.name == SUPER_ADMIN_ROLE).first()
        if role is None:
            raise NotFoundError("Role super_admin")

        user = User(email=email, password_hash=hash_password(password), is_active=True)
        self.session.add(user)
        self.session.flush()
        self.session.add(UserRole(user_id=user.id, role_id=role.id))
        self.session.flush()

        self.audit.record(
            ActorContext(user.id, ctx.ip_address, ctx.user_agent),
            'system_setup', 'auth',
            target_type='user', target_id=user.id, target_name=email
        )
        logger.info(f"Initial super admin created: {email}")

        roles = [SUPER_ADMIN_ROLE]
        return {'token': create_access_token(user.id, email, roles), 'roles': roles, 'user_id': user.id}

    def login(self, email: str, password: str, ctx: ActorContext) -> Dict[str, Any]:
        """
        Verify credentials of an active user.

        Returns:
            Dictionary with token, roles and user_id
        """
        email = (email or "").strip().lower()
        user = self.session.query(User).filter(User.email == email, User.is_active.is_(True)).first()
        if user is None or not verify_password(password or "", user.password_hash):
            logger.warning(f"Failed login for {email!r}")
            raise AuthenticationError("Invalid credentials")

        roles = [role.name for role in self.resolver.get_user_roles(user.id)]
        self.audit.record(
            ActorContext(user.id, ctx.ip_address, ctx.user_agent),
            'login', 'auth',
            target_type='user', target_id=user.id, target_name=user.email
        )
        return {'token': create_access_token(user.id, user.email, roles), 'roles': roles, 'user_id': user.id}

    # ========================================================================
    # Users
    # ========================================================================

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        return user

    def list_users(self, active_only: bool = False) -> List[User]:
        query = self.session.query(User)
        if active_only:
            query = query.filter(User.is_active.is_(True))
        return query.order_by(User.email).all()

    def user_summary(self, user_id: int) -> Dict[str, Any]:
        """User with roles, groups and effective permissions."""
        user = self.get_user(user_id)
        groups = (
            self.session.query(Group)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .filter(GroupMember.user_id == user_id)
            .order_by(Group.name)
            .all()
        )
        return {
            'user': user,
            'roles': self.resolver.get_user_roles(user_id),
            'groups': groups,
            'permissions': sorted(self.resolver.effective_permissions(user_id)),
        }

    def create_user(
        self,
        ctx: ActorContext,
        email: str,
        password: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role_ids: Iterable[int] = ()
    ) -> User:
        """
        Create a user, optionally with an initial password and roles.

        Raises:
            ConflictError: email already registered
            NotFoundError: unknown role id
        """
        email = normalize_email(email)
        if self.session.query(User.id).filter(User.email == email).first():
            raise ConflictError("A user with this email already exists")

        password_hash = hash_password(validate_password(password)) if password else None
        roles = [self._get_role(role_id) for role_id in role_ids]

        user = User(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            is_active=True
        )
        self.session.add(user)
        self.session.flush()

        for role in roles:
            self.session.add(UserRole(user_id=user.id, role_id=role.id, granted_by=ctx.actor_id))
        self.session.flush()

        self.audit.record(
            ctx, 'user_created', 'user',
            target_type='user', target_id=user.id, target_name=email,
            new_value={'email': email, 'roles': [r.name for r in roles]}
        )
        return user

    def update_user(self, ctx: ActorContext, user_id: int, **fields) -> User:
        """
        Update profile fields (first_name, last_name, password).

        Deactivation goes through deactivate_user only.
        """
        user = self.get_user(user_id)
        allowed = {'first_name', 'last_name', 'password'}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        changes = {k: v for k, v in fields.items() if v is not None}
        if not changes:
            raise ValidationError("No fields to update")

        old = {k: getattr(user, k) for k in changes if k != 'password'}
        for key, value in changes.items():
            if key == 'password':
                user.password_hash = hash_password(validate_password(value))
            else:
                setattr(user, key, value)
        self.session.flush()

        new = {k: v for k, v in changes.items() if k != 'password'}
        if 'password' in changes:
            new['password'] = '<changed>'
        self.audit.record(
            ctx, 'user_updated', 'user',
            target_type='user', target_id=user.id, target_name=user.email,
            old_value=old, new_value=new
        )
        return user

    def deactivate_user(self, ctx: ActorContext, user_id: int) -> User:
        """Deactivate a user. Already inactive users are left as they are."""
        user = self.get_user(user_id)
        if ctx.actor_id == user_id:
            raise ValidationError("You cannot deactivate your own account")
        if not user.is_active:
            return user

        user.is_active = False
        self.session.flush()
        self.audit.record(
            ctx, 'user_deactivated', 'user',
            target_type='user', target_id=user.id, target_name=user.email,
            old_value={'is_active': True}, new_value={'is_active': False}
        )
        return user

    # ========================================================================
    # Role assignment
    # ========================================================================

    def assign_role(self, ctx: ActorContext, user_id: int, role_id: int) -> bool:
        """
        Assign a role to a user.

        Returns:
            True if the assignment was created, False if it already existed
        """
        user = self.get_user(user_id)
        role = self._get_role(role_id)
        exists = self.session.query(UserRole.id).filter(
            UserRole.user_id == user_id, UserRole.role_id == role_id
        ).first()
        if exists:
            return False

        self.session.add(UserRole(user_id=user_id, role_id=role_id, granted_by=ctx.actor_id))
        self.session.flush()
        self.audit.record(
            ctx, 'role_assigned', 'role',
            target_type='user', target_id=user.id, target_name=user.email,
            new_value={'role': role.name}
        )
        return True

    def remove_role(self, ctx: ActorContext, user_id: int, role_id: int) -> bool:
        """
        Remove a role from a user.

        Returns:
            True if the role was removed, False if the user did not hold it
        """
        user = self.get_user(user_id)
        role = self._get_role(role_id)
        removed = self.session.query(UserRole).filter(
            UserRole.user_id == user_id, UserRole.role_id == role_id
        ).delete(synchronize_session=False)
        if not removed:
            return False

        self.audit.record(
            ctx, 'role_removed', 'role',
            target_type='user', target_id=user.id, target_name=user.email,
            old_value={'role': role.name}
        )
        return True

    def set_user_roles(self, ctx: ActorContext, user_id: int, role_ids: List[int]) -> User:
        """Replace a user's full role set."""
        user = self.get_user(user_id)
        roles = [self._get_role(role_id) for role_id in set(role_ids)]
        old = sorted(r.name for r in self.resolver.get_user_roles(user_id))

        self.session.query(UserRole).filter(UserRole.user_id == user_id).delete(synchronize_session=False)
        for role in roles:
            self.session.add(UserRole(user_id=user_id, role_id=role.id, granted_by=ctx.actor_id))
        self.session.flush()

        self.audit.record(
            ctx, 'user_roles_updated', 'role',
            target_type='user', target_id=user.id, target_name=user.email,
            old_value=old, new_value=sorted(r.name for r in roles)
        )
        return user

    # ========================================================================
    # Roles
    # ========================================================================

    def _get_role(self, role_id: int, lock: bool = False) -> Role:
        query = self.session.query(Role).filter(Role.id == role_id)
        if lock:
            query = query.with_for_update()
        role = query.first()
        if role is None:
            raise NotFoundError("Role")
        return role

    def get_role(self, role_id: int) -> Role:
        return self._get_role(role_id)

    def list_roles(self) -> List[Tuple[Role, int]]:
        """All roles, highest hierarchy first, with their user counts."""
        counts = dict(
            self.session.query(UserRole.role_id, func.count(UserRole.id))
            .group_by(UserRole.role_id)
            .all()
        )
        roles = self.session.query(Role).order_by(Role.hierarchy_level.desc(), Role.name).all()
        return [(role, counts.get(role.id, 0)) for role in roles]

    def role_hierarchy(self) -> List[Role]:
        return self.session.query(Role).order_by(Role.hierarchy_level.desc(), Role.name).all()

    def create_role(
        self,
        ctx: ActorContext,
        name: str,
        display_name: str,
        description: Optional[str] = None,
        hierarchy_level: int = 0,
        can_grant_access: bool = False,
        can_approve_requests: bool = False
    ) -> Role:
        name = validate_slug(name)
        display_name = validate_required(display_name, "display_name")
        if hierarchy_level < 0:
            raise ValidationError("hierarchy_level must not be negative")
        if self.session.query(Role.id).filter(Role.name == name).first():
            raise ConflictError(f"Role '{name}' already exists")

        role = Role(
            name=name,
            display_name=display_name,
            description=description,
            hierarchy_level=hierarchy_level,
            can_grant_access=can_grant_access,
            can_approve_requests=can_approve_requests,
            is_system_role=False
        )
        self.session.add(role)
        self.session.flush()

        self.audit.record(
            ctx, 'role_created', 'role',
            target_type='role', target_id=role.id, target_name=name,
            new_value=self._role_state(role)
        )
        return role

    def update_role(self, ctx: ActorContext, role_id: int, **fields) -> Role:
        """
        Update a role's display fields, hierarchy level or capability flags.

        A system role's hierarchy level may not drop below the configured floor.
        """
        role = self._get_role(role_id, lock=True)
        allowed = {'display_name', 'description', 'hierarchy_level', 'can_grant_access', 'can_approve_requests'}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        changes = {k: v for k, v in fields.items() if v is not None}
        if not changes:
            raise ValidationError("No fields to update")

        level = changes.get('hierarchy_level')
        if level is not None:
            if level < 0:
                raise ValidationError("hierarchy_level must not be negative")
            if role.is_system_role and level < settings.system_role_hierarchy_floor:
                raise ValidationError(
                    f"System roles cannot go below hierarchy level {settings.system_role_hierarchy_floor}"
                )
        if 'display_name' in changes:
            changes['display_name'] = validate_required(changes['display_name'], "display_name")

        old = self._role_state(role)
        for key, value in changes.items():
            setattr(role, key, value)
        self.session.flush()

        self.audit.record(
            ctx, 'role_updated', 'role',
            target_type='role', target_id=role.id, target_name=role.name,
            old_value=old, new_value=self._role_state(role)
        )
        return role

    def delete_role(self, ctx: ActorContext, role_id: int):
        """
        Delete a role.

        Raises:
            ConflictError: the role is a system role, or users still hold it
        """
        role = self._get_role(role_id, lock=True)
        if not self.resolver.can_delete(role):
            raise ConflictError("System roles cannot be deleted")

        holders = self.session.query(func.count(UserRole.id)).filter(UserRole.role_id == role_id).scalar()
        if holders:
            raise ConflictError(
                f"Role is still assigned to {holders} user(s); reassign them first"
            )

        old = self._role_state(role)
        self.session.delete(role)
        self.session.flush()

        self.audit.record(
            ctx, 'role_deleted', 'role',
            target_type='role', target_id=role_id, target_name=old['name'],
            old_value=old
        )

    @staticmethod
    def _role_state(role: Role) -> Dict[str, Any]:
        return {
            'name': role.name,
            'display_name': role.display_name,
            'hierarchy_level': role.hierarchy_level,
            'can_grant_access': role.can_grant_access,
            'can_approve_requests': role.can_approve_requests,
        }

    def get_role_permissions(self, role_id: int) -> List[Permission]:
        self._get_role(role_id)
        return (
            self.session.query(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(RolePermission.role_id == role_id)
            .order_by(Permission.category, Permission.name)
            .all()
        )

    def _resolve_permissions(self, permission_ids: Iterable[int]) -> List[Permission]:
        wanted = set(permission_ids)
        if not wanted:
            return []
        found = self.session.query(Permission).filter(Permission.id.in_(wanted)).all()
        if len(found) != len(wanted):
            missing = sorted(wanted - {p.id for p in found})
            raise NotFoundError(f"Permission(s) {', '.join(map(str, missing))}")
        return found

    def set_role_permissions(self, ctx: ActorContext, role_id: int, permission_ids: List[int]) -> List[Permission]:
        """
        Replace the role's permission set.

        Unknown ids fail the whole call before anything is changed.
        """
        role = self._get_role(role_id, lock=True)
        permissions = self._resolve_permissions(permission_ids)
        old = sorted(p.name for p in self.get_role_permissions(role_id))

        self.session.query(RolePermission).filter(
            RolePermission.role_id == role_id
        ).delete(synchronize_session=False)
        for perm in permissions:
            self.session.add(RolePermission(role_id=role_id, permission_id=perm.id))
        self.session.flush()

        new = sorted(p.name for p in permissions)
        self.audit.record(
            ctx, 'role_permissions_updated', 'role',
            target_type='role', target_id=role.id, target_name=role.name,
            old_value=old, new_value=new
        )
        return permissions

    # ========================================================================
    # Permissions
    # ========================================================================

    def get_permission(self, permission_id: int) -> Permission:
        perm = self.session.get(Permission, permission_id)
        if perm is None:
            raise NotFoundError("Permission")
        return perm

    def list_permissions(self, category: Optional[str] = None) -> List[Permission]:
        query = self.session.query(Permission)
        if category:
            query = query.filter(Permission.category == category)
        return query.order_by(Permission.category, Permission.name).all()

    def permission_categories(self) -> List[str]:
        rows = self.session.query(Permission.category).distinct().order_by(Permission.category).all()
        return [row[0] for row in rows]

    def _permission_in_use(self, permission_id: int) -> bool:
        by_role = self.session.query(RolePermission.id).filter(RolePermission.permission_id == permission_id).first()
        by_group = self.session.query(GroupPermission.id).filter(GroupPermission.permission_id == permission_id).first()
        return by_role is not None or by_group is not None

    def create_permission(
        self,
        ctx: ActorContext,
        name: str,
        display_name: str,
        category: str,
        description: Optional[str] = None
    ) -> Permission:
        name = validate_slug(name)
        display_name = validate_required(display_name, "display_name")
        category = validate_required(category, "category")
        if self.session.query(Permission.id).filter(Permission.name == name).first():
            raise ConflictError(f"Permission '{name}' already exists")

        perm = Permission(name=name, display_name=display_name, category=category, description=description)
        self.session.add(perm)
        self.session.flush()

        self.audit.record(
            ctx, 'permission_created', 'permission',
            target_type='permission', target_id=perm.id, target_name=name,
            new_value={'name': name, 'category': category}
        )
        return perm

    def update_permission(self, ctx: ActorContext, permission_id: int, **fields) -> Permission:
        """
        Update display fields. ``name`` and ``category`` are frozen once a
        role or group references the permission.
        """
        perm = self.get_permission(permission_id)
        allowed = {'name', 'display_name', 'description', 'category'}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        changes = {k: v for k, v in fields.items() if v is not None}
        if not changes:
            raise ValidationError("No fields to update")

        frozen = {'name', 'category'} & {k for k, v in changes.items() if v != getattr(perm, k)}
        if frozen and self._permission_in_use(permission_id):
            raise ConflictError("Permission is referenced by a role or group and cannot be renamed")
        if 'name' in changes:
            changes['name'] = validate_slug(changes['name'])

        old = {k: getattr(perm, k) for k in changes}
        for key, value in changes.items():
            setattr(perm, key, value)
        self.session.flush()

        self.audit.record(
            ctx, 'permission_updated', 'permission',
            target_type='permission', target_id=perm.id, target_name=perm.name,
            old_value=old, new_value=changes
        )
        return perm

    def delete_permission(self, ctx: ActorContext, permission_id: int):
        perm = self.get_permission(permission_id)
        if self._permission_in_use(permission_id):
            raise ConflictError("Permission is referenced by a role or group; remove it there first")

        name = perm.name
        self.session.delete(perm)
        self.session.flush()
        self.audit.record(
            ctx, 'permission_deleted', 'permission',
            target_type='permission', target_id=permission_id, target_name=name
        )

    # ========================================================================
    # Groups
    # ========================================================================

    def _get_group(self, group_id: int, lock: bool = False) -> Group:
        query = self.session.query(Group).filter(Group.id == group_id)
        if lock:
            query = query.with_for_update()
        group = query.first()
        if group is None:
            raise NotFoundError("Group")
        return group

    def get_group(self, group_id: int) -> Group:
        return self._get_group(group_id)

    def list_groups(self) -> List[Tuple[Group, int]]:
        """All groups with their member counts."""
        counts = dict(
            self.session.query(GroupMember.group_id, func.count(GroupMember.id))
            .group_by(GroupMember.group_id)
            .all()
        )
        groups = self.session.query(Group).order_by(Group.name).all()
        return [(group, counts.get(group.id, 0)) for group in groups]

    def create_group(
        self,
        ctx: ActorContext,
        name: str,
        display_name: str,
        description: Optional[str] = None
    ) -> Group:
        name = validate_slug(name)
        display_name = validate_required(display_name, "display_name")
        if self.session.query(Group.id).filter(Group.name == name).first():
            raise ConflictError(f"Group '{name}' already exists")

        group = Group(name=name, display_name=display_name, description=description)
        self.session.add(group)
        self.session.flush()

        self.audit.record(
            ctx, 'group_created', 'group',
            target_type='group', target_id=group.id, target_name=name,
            new_value={'name': name, 'display_name': display_name}
        )
        return group

    def update_group(self, ctx: ActorContext, group_id: int, **fields) -> Group:
        group = self._get_group(group_id)
        allowed = {'display_name', 'description'}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        changes = {k: v for k, v in fields.items() if v is not None}
        if not changes:
            raise ValidationError("No fields to update")
        if 'display_name' in changes:
            changes['display_name'] = validate_required(changes['display_name'], "display_name")

        old = {k: getattr(group, k) for k in changes}
        for key, value in changes.items():
            setattr(group, key, value)
        self.session.flush()

        self.audit.record(
            ctx, 'group_updated', 'group',
            target_type='group', target_id=group.id, target_name=group.name,
            old_value=old, new_value=changes
        )
        return group

    def delete_group(self, ctx: ActorContext, group_id: int):
        """Delete a group together with its memberships, permissions and approver listings."""
        group = self._get_group(group_id, lock=True)
        name = group.name
        self.session.query(ToolApprover).filter(ToolApprover.group_id == group_id).delete(synchronize_session=False)
        self.session.delete(group)
        self.session.flush()

        self.audit.record(
            ctx, 'group_deleted', 'group',
            target_type='group', target_id=group_id, target_name=name
        )

    def list_members(self, group_id: int) -> List[GroupMember]:
        self._get_group(group_id)
        return (
            self.session.query(GroupMember)
            .filter(GroupMember.group_id == group_id)
            .order_by(GroupMember.added_at)
            .all()
        )

    def add_members(self, ctx: ActorContext, group_id: int, user_ids: Iterable[int]) -> int:
        """
        Add users to a group. Existing members are skipped without error.

        Raises:
            NotFoundError: unknown group or user id (nothing is added)

        Returns:
            Number of memberships actually created
        """
        group = self._get_group(group_id)
        wanted = set(user_ids)
        users = self.session.query(User.id).filter(User.id.in_(wanted)).all() if wanted else []
        if len(users) != len(wanted):
            raise NotFoundError("User")

        existing = {
            row[0] for row in self.session.query(GroupMember.user_id).filter(
                GroupMember.group_id == group_id
            ).all()
        }
        added = sorted(wanted - existing)
        for user_id in added:
            self.session.add(GroupMember(group_id=group_id, user_id=user_id, added_by=ctx.actor_id))
        self.session.flush()

        if added:
            self.audit.record(
                ctx, 'group_members_added', 'group',
                target_type='group', target_id=group.id, target_name=group.name,
                new_value={'user_ids': added}
            )
        return len(added)

    def remove_member(self, ctx: ActorContext, group_id: int, user_id: int) -> bool:
        """
        Remove a user from a group. Removing a non-member is a no-op.

        Returns:
            True if a membership was removed
        """
        group = self._get_group(group_id)
        removed = self.session.query(GroupMember).filter(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id
        ).delete(synchronize_session=False)
        if not removed:
            return False

        self.audit.record(
            ctx, 'group_member_removed', 'group',
            target_type='group', target_id=group.id, target_name=group.name,
            old_value={'user_id': user_id}
        )
        return True

    def get_group_permissions(self, group_id: int) -> List[Permission]:
        self._get_group(group_id)
        return (
            self.session.query(Permission)
            .join(GroupPermission, GroupPermission.permission_id == Permission.id)
            .filter(GroupPermission.group_id == group_id)
            .order_by(Permission.category, Permission.name)
            .all()
        )

    def set_group_permissions(self, ctx: ActorContext, group_id: int, permission_ids: List[int]) -> List[Permission]:
        """Replace the group's direct permission set."""
        group = self._get_group(group_id, lock=True)
        permissions = self._resolve_permissions(permission_ids)
        old = sorted(p.name for p in self.get_group_permissions(group_id))

        self.session.query(GroupPermission).filter(
            GroupPermission.group_id == group_id
        ).delete(synchronize_session=False)
        for perm in permissions:
            self.session.add(GroupPermission(group_id=group_id, permission_id=perm.id))
        self.session.flush()

        self.audit.record(
            ctx, 'group_permissions_updated', 'group',
            target_type='group', target_id=group.id, target_name=group.name,
            old_value=old, new_value=sorted(p.name for p in permissions)
        )
        return permissions

    # ========================================================================
    # Bulk operations
    # ========================================================================

    def _apply_pair(self, row) -> bool:
        """Insert one association row inside a savepoint; False if it violates a constraint."""
        try:
            with self.session.begin_nested():
                self.session.add(row)
                self.session.flush()
            return True
        except IntegrityError:
            return False

    def _existing_ids(self, model, ids: Iterable[int]) -> set:
        ids = set(ids)
        if not ids:
            return set()
        return {row[0] for row in self.session.query(model.id).filter(model.id.in_(ids)).all()}

    def bulk_assign_roles(self, ctx: ActorContext, user_ids: List[int], role_ids: List[int]) -> BulkResult:
        """Assign every role to every user; existing assignments are left alone."""
        if not user_ids or not role_ids:
            raise ValidationError("user_ids and role_ids are required")

        users = self._existing_ids(User, user_ids)
        roles = self._existing_ids(Role, role_ids)
        existing = set(
            self.session.query(UserRole.user_id, UserRole.role_id).filter(
                UserRole.user_id.in_(users or {0})
            ).all()
        )

        result = BulkResult()
        for user_id in dict.fromkeys(user_ids):
            for role_id in dict.fromkeys(role_ids):
                if user_id not in users or role_id not in roles:
                    result.failed += 1
                elif (user_id, role_id) in existing:
                    continue
                elif self._apply_pair(UserRole(user_id=user_id, role_id=role_id, granted_by=ctx.actor_id)):
                    result.count += 1
                else:
                    result.failed += 1

        if result.count:
            self.audit.record(
                ctx, 'bulk_roles_assigned', 'bulk',
                target_type='user',
                new_value={'user_ids': list(user_ids), 'role_ids': list(role_ids), 'assignments': result.count}
            )
        return result

    def bulk_remove_roles(self, ctx: ActorContext, user_ids: List[int], role_ids: List[int]) -> BulkResult:
        if not user_ids or not role_ids:
            raise ValidationError("user_ids and role_ids are required")

        result = BulkResult()
        removed = self.session.query(UserRole).filter(
            UserRole.user_id.in_(set(user_ids)),
            UserRole.role_id.in_(set(role_ids))
        ).delete(synchronize_session=False)
        result.count = removed

        if removed:
            self.audit.record(
                ctx, 'bulk_roles_removed', 'bulk',
                target_type='user',
                old_value={'user_ids': list(user_ids), 'role_ids': list(role_ids), 'removals': removed}
            )
        return result

    def bulk_add_to_groups(self, ctx: ActorContext, user_ids: List[int], group_ids: List[int]) -> BulkResult:
        """Add every user to every group; existing memberships are left alone."""
        if not user_ids or not group_ids:
            raise ValidationError("user_ids and group_ids are required")

        users = self._existing_ids(User, user_ids)
        groups = self._existing_ids(Group, group_ids)
        existing = set(
            self.session.query(GroupMember.user_id, GroupMember.group_id).filter(
                GroupMember.group_id.in_(groups or {0})
            ).all()
        )

        result = BulkResult()
        for user_id in dict.fromkeys(user_ids):
            for group_id in dict.fromkeys(group_ids):
                if user_id not in users or group_id not in groups:
                    result.failed += 1
                elif (user_id, group_id) in existing:
                    continue
                elif self._apply_pair(GroupMember(group_id=group_id, user_id=user_id, added_by=ctx.actor_id)):
                    result.count += 1
                else:
                    result.failed += 1

        if result.count:
            self.audit.record(
                ctx, 'bulk_groups_added', 'bulk',
                target_type='group',
                new_value={'user_ids': list(user_ids), 'group_ids': list(group_ids), 'memberships': result.count}
            )
        return result

    def bulk_assign_group_permissions(
        self, ctx: ActorContext, group_ids: List[int], permission_ids: List[int]
    ) -> BulkResult:
        """Add permissions to groups without replacing what they already have."""
        if not group_ids or not permission_ids:
            raise ValidationError("group_ids and permission_ids are required")

        groups = self._existing_ids(Group, group_ids)
        permissions = self._existing_ids(Permission, permission_ids)
        existing = set(
            self.session.query(GroupPermission.group_id, GroupPermission.permission_id).filter(
                GroupPermission.group_id.in_(groups or {0})
            ).all()
        )

        result = BulkResult()
        for group_id in dict.fromkeys(group_ids):
            for permission_id in dict.fromkeys(permission_ids):
                if group_id not in groups or permission_id not in permissions:
                    result.failed += 1
                elif (group_id, permission_id) in existing:
                    continue
                elif self._apply_pair(GroupPermission(group_id=group_id, permission_id=permission_id)):
                    result.count += 1
                else:
                    result.failed += 1

        if result.count:
            self.audit.record(
                ctx, 'bulk_permissions_assigned', 'bulk',
                target_type='group',
                new_value={'group_ids': list(group_ids), 'permission_ids': list(permission_ids),
                           'assignments': result.count}
            )
        return result

