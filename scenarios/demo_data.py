"""
Demo Data Loader
================

Creates a small engineering organisation to explore AccessHub with:

- An admin, an approving manager, a granting admin and two engineers
- A tool catalog with one decommissioned (inactive) tool
- Approvers mapped directly (bob) and through a group (sre-leads)
- A few requests in different states

Everything goes through the services, so the audit log shows how the
data came to be.
"""

from datetime import timedelta

from core.context import ActorContext
from core.identity import IdentityStore
from core.tools import TARGET_TYPE_TOOL, ToolRegistry
from core.workflow import AccessWorkflow
from models.database import init_db, get_session
from models.entities import (
    User, Role, Group, UserRole, GroupMember, GroupPermission,
    Tool, ToolApprover, AccessRequest, AuditLog, utcnow
)

DEMO_PASSWORD = "accesshub-demo"

DEMO_USERS = [
    # (email, first_name, last_name, role)
    ("admin@accesshub.local", "Ada", "Admin", "super_admin"),
    ("carol@accesshub.local", "Carol", "Ops", "admin"),
    ("bob@accesshub.local", "Bob", "Lead", "manager"),
    ("alice@accesshub.local", "Alice", "Engineer", "user"),
    ("dave@accesshub.local", "Dave", "Engineer", "user"),
]

DEMO_TOOLS = [
    # (name, display_name, category, icon, is_active)
    ("github", "GitHub Enterprise", "Development", "github", True),
    ("aws-console", "AWS Console", "Cloud", "cloud", True),
    ("prod-db", "Production Database", "Data", "database", True),
    ("jenkins", "Jenkins CI", "Development", "hammer", True),
    ("legacy-crm", "Legacy CRM", "Business", "archive", False),
]


def _clear(session):
    """Remove everything except the seeded roles, permissions and privilege levels."""
    session.query(AuditLog).delete()
    session.query(AccessRequest).delete()
    session.query(ToolApprover).delete()
    session.query(Tool).delete()
    session.query(GroupPermission).delete()
    session.query(GroupMember).delete()
    session.query(Group).delete()
    session.query(UserRole).delete()
    session.query(User).delete()
    session.flush()


def load_demo_data():
    """
    Load demo data, replacing any previous users, tools and requests.

    Returns:
        Dictionary mapping demo names (emails, tool names) to ids
    """
    init_db()

    with get_session() as session:
        _clear(session)

        system = ActorContext.system()
        identity = IdentityStore(session)
        tools = ToolRegistry(session)

        roles = {role.name: role.id for role in session.query(Role).all()}
        ids = {}

        # ================================================================
        # Users
        # ================================================================
        for email, first_name, last_name, role in DEMO_USERS:
            user = identity.create_user(
                system, email,
                password=DEMO_PASSWORD,
                first_name=first_name,
                last_name=last_name,
                role_ids=[roles[role]]
            )
            ids[email.split("@")[0]] = user.id

        admin = ActorContext(ids["admin"], user_agent="accesshub-demo")

        # ================================================================
        # Groups
        # ================================================================
        sre = identity.create_group(admin, "sre-leads", "SRE Leads", "On-call leads who approve data access")
        identity.add_members(admin, sre.id, [ids["carol"]])
        ids["sre-leads"] = sre.id

        # ================================================================
        # Tools and approvers
        # ================================================================
        for name, display_name, category, icon, is_active in DEMO_TOOLS:
            tool = tools.create(admin, name, display_name, category=category, icon=icon, is_active=is_active)
            ids[name] = tool.id

        tools.add_approver(admin, ids["github"], user_id=ids["bob"])
        tools.add_approver(admin, ids["aws-console"], user_id=ids["bob"])
        tools.add_approver(admin, ids["prod-db"], group_id=sre.id)

        # ================================================================
        # Requests in a few states
        # ================================================================
        workflow = AccessWorkflow(session)
        alice = ActorContext(ids["alice"], user_agent="accesshub-demo")
        dave = ActorContext(ids["dave"], user_agent="accesshub-demo")
        bob = ActorContext(ids["bob"], user_agent="accesshub-demo")
        carol = ActorContext(ids["carol"], user_agent="accesshub-demo")

        workflow.create_access_request(alice, TARGET_TYPE_TOOL, ids["jenkins"], "read", "Check build logs")
        pending = workflow.create_access_request(
            alice, TARGET_TYPE_TOOL, ids["aws-console"], "write", "Rotate staging keys", 120
        )
        ids["pending_request"] = pending.id

        approved = workflow.create_access_request(dave, TARGET_TYPE_TOOL, ids["github"], "read", "Code review", 480)
        workflow.approve_request(bob, approved.id)

        rejected = workflow.create_access_request(dave, TARGET_TYPE_TOOL, ids["prod-db"], "write", "Debug a report")
        workflow.reject_request(carol, rejected.id, "Use the read replica instead")

        grant = workflow.direct_grant(carol, ids["alice"], TARGET_TYPE_TOOL, ids["prod-db"], "read", 30)
        # backdate so the next sweep has something to expire
        grant.approved_at = utcnow() - timedelta(hours=1)
        grant.expires_at = grant.approved_at + timedelta(minutes=30)
        session.flush()

        return ids
