"""
Workflow Walkthrough
====================

Scripted scenarios that exercise the access workflow against the demo
data and report expected versus actual outcomes:

1. Approval - a manager approves a timed request; expiry is derived
2. Self-approval - an approver cannot approve their own request
3. Hierarchy - a manager cannot approve admin-level access
4. System role - deleting a built-in role is refused
5. Inactive tool - requests for decommissioned tools are rejected
6. Race - once approved, a late rejection fails
7. Expiry - the sweep expires grants past their deadline

Each scenario runs in a transaction that is rolled back afterwards, so the
walkthrough can be repeated without reloading the demo data.
"""

from datetime import timedelta

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from core.context import ActorContext
from core.exceptions import AccessHubError
from core.identity import IdentityStore
from core.tools import TARGET_TYPE_TOOL, ToolRegistry
from core.workflow import AccessWorkflow
from models.database import SessionLocal
from models.entities import AuditLog, Group, Role, Tool, User, RequestStatus, utcnow

console = Console()


def _user(session, name: str) -> ActorContext:
    user = session.query(User).filter(User.email == f"{name}@accesshub.local").first()
    if user is None:
        raise LookupError(f"demo user '{name}' not found; run 'demo' first")
    return ActorContext(user.id, ip_address="127.0.0.1", user_agent="accesshub-walkthrough")


def _tool(session, name: str) -> int:
    tool = session.query(Tool).filter(Tool.name == name).first()
    if tool is None:
        raise LookupError(f"demo tool '{name}' not found; run 'demo' first")
    return tool.id


def scenario_approval(session):
    """alice asks for 60 minutes of write access to GitHub; bob approves."""
    workflow = AccessWorkflow(session)
    alice, bob = _user(session, "alice"), _user(session, "bob")

    request = workflow.create_access_request(
        alice, TARGET_TYPE_TOOL, _tool(session, "github"), "write", "deploy hotfix", 60
    )
    request = workflow.approve_request(bob, request.id)

    audited = session.query(AuditLog).filter(
        AuditLog.action == "request_approved",
        AuditLog.target_id == request.id
    ).count()
    ok = (
        request.status == RequestStatus.APPROVED
        and request.expires_at == request.approved_at + timedelta(minutes=60)
        and audited == 1
    )
    return ok, f"status={request.status.value}, expires_at={request.expires_at:%H:%M}, audit rows={audited}"


def scenario_self_approval(session):
    """bob files a request himself and tries to approve it."""
    workflow = AccessWorkflow(session)
    bob = _user(session, "bob")

    request = workflow.create_access_request(bob, TARGET_TYPE_TOOL, _tool(session, "github"), "read", "own access")
    workflow.approve_request(bob, request.id)
    return False, "self-approval went through"


def scenario_hierarchy(session):
    """bob (manager, level 50) cannot approve admin access (needs 80)."""
    workflow = AccessWorkflow(session)
    alice, bob = _user(session, "alice"), _user(session, "bob")

    request = workflow.create_access_request(alice, TARGET_TYPE_TOOL, _tool(session, "github"), "admin", "org settings")
    workflow.approve_request(bob, request.id)
    return False, "manager approved admin access"


def scenario_system_role(session):
    """Deleting the super_admin role must fail."""
    admin = _user(session, "admin")
    role = session.query(Role).filter(Role.name == "super_admin").one()
    IdentityStore(session).delete_role(admin, role.id)
    return False, "system role deleted"


def scenario_inactive_tool(session):
    """alice requests access to the decommissioned CRM."""
    workflow = AccessWorkflow(session)
    alice = _user(session, "alice")
    workflow.create_access_request(alice, TARGET_TYPE_TOOL, _tool(session, "legacy-crm"), "read", "old invoices")
    return False, "request created for inactive tool"


def scenario_race(session):
    """bob approves; carol's rejection of the same request arrives second."""
    workflow = AccessWorkflow(session)
    admin, dave = _user(session, "admin"), _user(session, "dave")
    bob, carol = _user(session, "bob"), _user(session, "carol")
    aws = _tool(session, "aws-console")

    sre = session.query(Group).filter(Group.name == "sre-leads").one()
    ToolRegistry(session).add_approver(admin, aws, group_id=sre.id)

    request = workflow.create_access_request(dave, TARGET_TYPE_TOOL, aws, "read", "billing")
    workflow.approve_request(bob, request.id)
    workflow.reject_request(carol, request.id, "too late")
    return False, "second decision overwrote the first"


def scenario_expiry(session):
    """A 30 minute grant, swept an hour later, becomes EXPIRED exactly once."""
    workflow = AccessWorkflow(session)
    carol, dave = _user(session, "carol"), _user(session, "dave")

    grant = workflow.direct_grant(carol, dave.actor_id, TARGET_TYPE_TOOL, _tool(session, "jenkins"), "read", 30)
    later = utcnow() + timedelta(hours=1)
    first = workflow.expire_due(later)
    second = workflow.expire_due(later)
    session.refresh(grant)

    ok = grant.status == RequestStatus.EXPIRED and first >= 1 and second == 0
    return ok, f"status={grant.status.value}, first sweep={first}, second sweep={second}"


# (name, function, expected outcome: None = succeeds, else the error it must raise)
SCENARIOS = [
    ("approval", scenario_approval, None),
    ("self-approval", scenario_self_approval, "AuthorizationError"),
    ("hierarchy", scenario_hierarchy, "AuthorizationError"),
    ("system-role", scenario_system_role, "ConflictError"),
    ("inactive-tool", scenario_inactive_tool, "ValidationError"),
    ("race", scenario_race, "InvalidStateError"),
    ("expiry", scenario_expiry, None),
]


def run_scenarios(scenario_name: str = "all") -> bool:
    """
    Run walkthrough scenarios and print a results table.

    Args:
        scenario_name: One scenario name, or "all"

    Returns:
        True if every scenario that ran behaved as expected
    """
    selected = [s for s in SCENARIOS if scenario_name in ("all", s[0])]
    if not selected:
        console.print(f"[red]Unknown scenario: {scenario_name}[/red]")
        console.print(f"Available: {', '.join(s[0] for s in SCENARIOS)}, all")
        return False

    console.print(Panel(
        "[bold]AccessHub Workflow Walkthrough[/bold]\n\n"
        "Each scenario runs against the demo data and is rolled back afterwards.",
        title="Scenarios",
        box=box.DOUBLE
    ))

    table = Table(title="Scenario Results", box=box.ROUNDED)
    table.add_column("Scenario", style="cyan")
    table.add_column("Expected")
    table.add_column("Actual")
    table.add_column("Result")
    table.add_column("Detail")

    passed = 0
    for name, func, expected_error in selected:
        session = SessionLocal()
        try:
            ok, detail = func(session)
            actual = "success" if ok else "unexpected outcome"
            ok = ok and expected_error is None
        except AccessHubError as e:
            actual = type(e).__name__
            detail = e.detail
            ok = actual == expected_error
        except LookupError as e:
            actual, detail, ok = "missing data", str(e), False
        finally:
            session.rollback()
            session.close()

        if ok:
            passed += 1
        table.add_row(
            name,
            expected_error or "success",
            actual,
            "[green]PASS[/green]" if ok else "[red]FAIL[/red]",
            detail
        )

    console.print(table)
    console.print(f"\n[bold]Results:[/bold] [green]{passed} passed[/green], "
                  f"[red]{len(selected) - passed} failed[/red]")
    return passed == len(selected)
