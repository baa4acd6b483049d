"""
Built-in Reference Data
=======================

System roles, the permission catalog and default privilege levels every
AccessHub database starts with. Seeding is idempotent: existing rows are
left untouched so administrators' edits survive restarts.
"""

from sqlalchemy.orm import Session

from .entities import Role, Permission, RolePermission, PrivilegeLevel

# (name, display_name, description, hierarchy_level, can_grant_access, can_approve_requests)
SYSTEM_ROLES = [
    ("super_admin", "Super Admin", "Full system access with all privileges", 100, True, True),
    ("admin", "Administrator", "Administrative access to manage users and resources", 80, True, True),
    ("manager", "Manager", "Can approve access requests and view reports", 50, False, True),
    ("user", "User", "Standard user with basic access", 10, False, False),
]

# (name, display_name, description, category)
PERMISSIONS = [
    ("users.create", "Create Users", "Create new user accounts", "users"),
    ("users.read", "View Users", "View user information", "users"),
    ("users.update", "Update Users", "Modify user accounts", "users"),
    ("users.delete", "Delete Users", "Deactivate user accounts", "users"),
    ("roles.create", "Create Roles", "Create new roles", "roles"),
    ("roles.read", "View Roles", "View role information", "roles"),
    ("roles.update", "Update Roles", "Modify roles", "roles"),
    ("roles.delete", "Delete Roles", "Remove roles", "roles"),
    ("roles.assign", "Assign Roles", "Assign roles to users", "roles"),
    ("permissions.manage", "Manage Permissions", "Create, update and delete permissions", "roles"),
    ("groups.create", "Create Groups", "Create user groups", "groups"),
    ("groups.read", "View Groups", "View group information", "groups"),
    ("groups.update", "Update Groups", "Modify groups", "groups"),
    ("groups.delete", "Delete Groups", "Remove groups", "groups"),
    ("groups.manage_members", "Manage Group Members", "Add/remove group members", "groups"),
    ("tools.create", "Create Tools", "Add new tools/resources", "tools"),
    ("tools.read", "View Tools", "View tools information", "tools"),
    ("tools.update", "Update Tools", "Modify tools", "tools"),
    ("tools.delete", "Delete Tools", "Remove tools", "tools"),
    ("tools.manage_access", "Manage Tool Access", "Manage tool approvers and privilege levels", "tools"),
    ("access.request", "Request Access", "Request access to resources", "access"),
    ("access.approve", "Approve Access", "Approve access requests", "access"),
    ("access.reject", "Reject Access", "Reject access requests", "access"),
    ("access.grant", "Grant Access", "Directly grant access", "access"),
    ("access.revoke", "Revoke Access", "Revoke existing access", "access"),
    ("audit.read", "View Audit Logs", "View audit logs", "audit"),
    ("audit.export", "Export Audit Logs", "Export audit log data", "audit"),
]

ROLE_PERMISSIONS = {
    "super_admin": None,  # everything
    "admin": lambda name: name not in ("roles.delete", "audit.export"),
    "manager": lambda name: name in (
        "users.read", "roles.read", "groups.read", "tools.read",
        "access.request", "access.approve", "access.reject", "audit.read",
    ),
    "user": lambda name: name in ("users.read", "tools.read", "access.request"),
}

# (access_level, display_name, description, min_hierarchy_level)
PRIVILEGE_LEVELS = [
    ("read", "Read", "Read-only access", 10),
    ("write", "Write", "Read and modify", 50),
    ("admin", "Admin", "Full administrative access to the tool", 80),
]


def seed_defaults(session: Session):
    """
    Insert missing system roles, permissions, role grants and
    privilege levels.

    Role grants are only seeded for a role the first time it is created.
    """
    created_roles = set()
    for name, display_name, description, level, can_grant, can_approve in SYSTEM_ROLES:
        if session.query(Role).filter(Role.name == name).first() is None:
            session.add(Role(
                name=name,
                display_name=display_name,
                description=description,
                hierarchy_level=level,
                can_grant_access=can_grant,
                can_approve_requests=can_approve,
                is_system_role=True
            ))
            created_roles.add(name)

    for name, display_name, description, category in PERMISSIONS:
        if session.query(Permission).filter(Permission.name == name).first() is None:
            session.add(Permission(
                name=name,
                display_name=display_name,
                description=description,
                category=category
            ))

    for access_level, display_name, description, min_level in PRIVILEGE_LEVELS:
        exists = session.query(PrivilegeLevel).filter(
            PrivilegeLevel.access_level == access_level
        ).first()
        if exists is None:
            session.add(PrivilegeLevel(
                access_level=access_level,
                display_name=display_name,
                description=description,
                min_hierarchy_level=min_level
            ))

    session.flush()

    permissions = session.query(Permission).all()
    for role_name in created_roles:
        role = session.query(Role).filter(Role.name == role_name).one()
        selector = ROLE_PERMISSIONS.get(role_name)
        for perm in permissions:
            if selector is None or selector(perm.name):
                session.add(RolePermission(role_id=role.id, permission_id=perm.id))

    session.flush()
