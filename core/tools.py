"""
Tool Registry
=============

Catalog of requestable tools, who may approve access to each of them, and
the privilege-level table that maps an access level to the hierarchy an
approver needs.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models.entities import Tool, ToolApprover, PrivilegeLevel, AccessRequest, User, Group
from .audit import AuditLogger
from .context import ActorContext
from .exceptions import ConflictError, NotFoundError, ValidationError
from .validators import validate_required, validate_slug

logger = logging.getLogger(__name__)

TARGET_TYPE_TOOL = 'tool'


class ToolRegistry:
    """
    Tool catalog service.

    Provides:
    - Tool CRUD (``name`` is immutable once created)
    - Approver mapping per tool (users or groups)
    - Privilege level configuration
    """

    def __init__(self, session: Session):
        self.session = session
        self.audit = AuditLogger(session)

    # ========================================================================
    # Tools
    # ========================================================================

    def get(self, tool_id: int) -> Tool:
        tool = self.session.get(Tool, tool_id)
        if tool is None:
            raise NotFoundError("Tool")
        return tool

    def list(self, category: Optional[str] = None, active_only: bool = False) -> List[Tool]:
        """
        List tools in the catalog.

        Args:
            category: Only tools in this category
            active_only: Hide deactivated tools

        Returns:
            Tools ordered by category then display name
        """
        query = self.session.query(Tool)
        if category:
            query = query.filter(Tool.category == category)
        if active_only:
            query = query.filter(Tool.is_active.is_(True))
        return query.order_by(Tool.category, Tool.display_name).all()

    def categories(self) -> List[str]:
        rows = (
            self.session.query(Tool.category)
            .filter(Tool.category.isnot(None))
            .distinct()
            .order_by(Tool.category)
            .all()
        )
        return [row[0] for row in rows]

    def create(
        self,
        ctx: ActorContext,
        name: str,
        display_name: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
        icon: Optional[str] = None,
        is_active: bool = True
    ) -> Tool:
        name = validate_slug(name)
        display_name = validate_required(display_name, "display_name")
        if self.session.query(Tool.id).filter(Tool.name == name).first():
            raise ConflictError(f"Tool '{name}' already exists")

        tool = Tool(
            name=name,
            display_name=display_name,
            description=description,
            category=category,
            icon=icon,
            is_active=is_active
        )
        self.session.add(tool)
        self.session.flush()

        self.audit.record(
            ctx, 'tool_created', 'tool',
            target_type=TARGET_TYPE_TOOL, target_id=tool.id, target_name=name,
            new_value={'name': name, 'display_name': display_name, 'category': category}
        )
        logger.info(f"Tool created: {name} (id={tool.id})")
        return tool

    def update(self, ctx: ActorContext, tool_id: int, **fields) -> Tool:
        """
        Update a tool's mutable fields.

        Raises:
            ValidationError: attempt to rename the tool or unknown field
        """
        tool = self.get(tool_id)
        if 'name' in fields and fields['name'] not in (None, tool.name):
            raise ValidationError("Tool name cannot be changed")
        fields.pop('name', None)

        allowed = {'display_name', 'description', 'category', 'icon', 'is_active'}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        changes = {k: v for k, v in fields.items() if v is not None}
        if not changes:
            raise ValidationError("No fields to update")
        if 'display_name' in changes:
            changes['display_name'] = validate_required(changes['display_name'], "display_name")

        old = {k: getattr(tool, k) for k in changes}
        for key, value in changes.items():
            setattr(tool, key, value)
        self.session.flush()

        action = 'tool_updated'
        if changes.get('is_active') is False and old.get('is_active'):
            action = 'tool_deactivated'
        self.audit.record(
            ctx, action, 'tool',
            target_type=TARGET_TYPE_TOOL, target_id=tool.id, target_name=tool.name,
            old_value=old, new_value=changes
        )
        return tool

    def delete(self, ctx: ActorContext, tool_id: int):
        """
        Delete a tool that no request has ever referenced.

        Raises:
            ConflictError: requests reference the tool (deactivate it instead)
        """
        tool = self.get(tool_id)
        referenced = self.session.query(AccessRequest.id).filter(
            AccessRequest.target_type == TARGET_TYPE_TOOL,
            AccessRequest.target_id == tool_id
        ).first()
        if referenced is not None:
            raise ConflictError("Tool has access requests; deactivate it instead")

        name = tool.name
        self.session.delete(tool)
        self.session.flush()
        self.audit.record(
            ctx, 'tool_deleted', 'tool',
            target_type=TARGET_TYPE_TOOL, target_id=tool_id, target_name=name
        )

    # ========================================================================
    # Approvers
    # ========================================================================

    def list_approvers(self, tool_id: int) -> List[ToolApprover]:
        self.get(tool_id)
        return (
            self.session.query(ToolApprover)
            .filter(ToolApprover.tool_id == tool_id)
            .order_by(ToolApprover.id)
            .all()
        )

    def add_approver(
        self,
        ctx: ActorContext,
        tool_id: int,
        user_id: Optional[int] = None,
        group_id: Optional[int] = None
    ) -> ToolApprover:
        """
        List a user or a group (exactly one) as approver for the tool.

        Adding an existing approver returns the existing mapping.
        """
        tool = self.get(tool_id)
        if (user_id is None) == (group_id is None):
            raise ValidationError("Exactly one of user_id or group_id is required")

        if user_id is not None:
            subject = self.session.get(User, user_id)
            if subject is None:
                raise NotFoundError("User")
            subject_name = subject.email
        else:
            subject = self.session.get(Group, group_id)
            if subject is None:
                raise NotFoundError("Group")
            subject_name = subject.name

        existing = self.session.query(ToolApprover).filter(
            ToolApprover.tool_id == tool_id,
            ToolApprover.user_id == user_id if user_id is not None else ToolApprover.user_id.is_(None),
            ToolApprover.group_id == group_id if group_id is not None else ToolApprover.group_id.is_(None)
        ).first()
        if existing is not None:
            return existing

        approver = ToolApprover(tool_id=tool_id, user_id=user_id, group_id=group_id, added_by=ctx.actor_id)
        self.session.add(approver)
        self.session.flush()

        self.audit.record(
            ctx, 'tool_approver_added', 'tool',
            target_type=TARGET_TYPE_TOOL, target_id=tool.id, target_name=tool.name,
            new_value={'user_id': user_id, 'group_id': group_id, 'approver': subject_name}
        )
        return approver

    def remove_approver(self, ctx: ActorContext, tool_id: int, approver_id: int) -> bool:
        tool = self.get(tool_id)
        approver = self.session.query(ToolApprover).filter(
            ToolApprover.id == approver_id,
            ToolApprover.tool_id == tool_id
        ).first()
        if approver is None:
            return False

        old = {'user_id': approver.user_id, 'group_id': approver.group_id}
        self.session.delete(approver)
        self.session.flush()
        self.audit.record(
            ctx, 'tool_approver_removed', 'tool',
            target_type=TARGET_TYPE_TOOL, target_id=tool.id, target_name=tool.name,
            old_value=old
        )
        return True

    # ========================================================================
    # Privilege levels
    # ========================================================================

    def list_privilege_levels(self) -> List[PrivilegeLevel]:
        return self.session.query(PrivilegeLevel).order_by(PrivilegeLevel.min_hierarchy_level).all()

    def get_privilege_level(self, access_level: str) -> Optional[PrivilegeLevel]:
        return self.session.query(PrivilegeLevel).filter(
            PrivilegeLevel.access_level == access_level
        ).first()

    def set_privilege_level(
        self,
        ctx: ActorContext,
        access_level: str,
        min_hierarchy_level: int,
        display_name: Optional[str] = None,
        description: Optional[str] = None
    ) -> PrivilegeLevel:
        """
        Create or update the approver threshold for an access level.
        """
        access_level = validate_slug(access_level, "access_level")
        if min_hierarchy_level < 0:
            raise ValidationError("min_hierarchy_level must not be negative")

        level = self.get_privilege_level(access_level)
        old: Optional[Dict[str, Any]] = None
        if level is None:
            level = PrivilegeLevel(
                access_level=access_level,
                display_name=display_name or access_level.capitalize(),
                description=description,
                min_hierarchy_level=min_hierarchy_level
            )
            self.session.add(level)
        else:
            old = {'min_hierarchy_level': level.min_hierarchy_level, 'display_name': level.display_name}
            level.min_hierarchy_level = min_hierarchy_level
            if display_name:
                level.display_name = display_name
            if description is not None:
                level.description = description
        self.session.flush()

        self.audit.record(
            ctx, 'privilege_level_updated', 'tool',
            target_type='privilege_level', target_id=level.id, target_name=access_level,
            old_value=old,
            new_value={'min_hierarchy_level': level.min_hierarchy_level, 'display_name': level.display_name}
        )
        return level
