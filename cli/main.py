"""
AccessHub - Operator CLI
========================

Command-line interface for running and administering AccessHub.

Features:
- Database setup, demo data and the workflow walkthrough
- API server and expiry sweep
- User, role and tool administration
- Access request and audit log inspection

Built with Typer and Rich. Changes made here are attributed to the system
actor in the audit log.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.tree import Tree
from rich import box

from core.context import ActorContext
from core.exceptions import AccessHubError

# Initialize CLI app and console
app = typer.Typer(
    name="accesshub",
    help="AccessHub - access-governance backend",
    add_completion=False
)

console = Console()

# Sub-commands
users_app = typer.Typer(help="Manage users")
roles_app = typer.Typer(help="Manage roles")
tools_app = typer.Typer(help="Manage the tool catalog")
requests_app = typer.Typer(help="Inspect access requests")
audit_app = typer.Typer(help="View and export audit logs")

app.add_typer(users_app, name="users")
app.add_typer(roles_app, name="roles")
app.add_typer(tools_app, name="tools")
app.add_typer(requests_app, name="requests")
app.add_typer(audit_app, name="audit")

CLI_ACTOR = ActorContext(actor_id=None, user_agent="accesshub-cli")

STATUS_STYLES = {
    "PENDING": "yellow",
    "APPROVED": "green",
    "REJECTED": "red",
    "REVOKED": "magenta",
    "EXPIRED": "dim",
}


@contextmanager
def get_session():
    """Database session that turns domain errors into a clean exit."""
    from models.database import get_session as db_session

    try:
        with db_session() as session:
            yield session
    except AccessHubError as e:
        console.print(f"[red]{type(e).__name__}: {e.detail}[/red]")
        raise typer.Exit(code=1)


def _fmt(value: Optional[datetime], fmt: str = "%Y-%m-%d %H:%M") -> str:
    return value.strftime(fmt) if value else "-"


def _find_user(session, email: str):
    from models.entities import User

    user = session.query(User).filter(User.email == email.strip().lower()).first()
    if not user:
        console.print(f"[red]User '{email}' not found[/red]")
        raise typer.Exit(code=1)
    return user


def print_banner():
    """Display application banner."""
    banner = """
    ╔═══════════════════════════════════════════════════════════╗
    ║                        ACCESSHUB                          ║
    ║                                                           ║
    ║     Tool access requests, approvals, grants and audit     ║
    ╚═══════════════════════════════════════════════════════════╝
    """
    console.print(Panel(banner, style="bold blue"))


# ============================================================================
# Database & Server Commands
# ============================================================================

@app.command()
def init():
    """Initialize the database schema and built-in roles."""
    from models.database import init_db
    init_db()
    console.print("[green]Database initialized successfully![/green]")


@app.command()
def reset(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """Reset database (WARNING: destroys all data)."""
    if yes or typer.confirm("This will delete all data. Are you sure?"):
        from models.database import reset_db
        reset_db()
        console.print("[yellow]Database reset complete.[/yellow]")


@app.command()
def demo():
    """Load demo users, tools and requests."""
    from scenarios import load_demo_data
    from scenarios.demo_data import DEMO_PASSWORD

    load_demo_data()
    console.print("[green]Demo data loaded successfully![/green]")
    console.print(f"All demo users share the password [bold]{DEMO_PASSWORD}[/bold]\n")
    console.print("Try these commands to explore:")
    console.print("  [cyan]accesshub users list[/cyan]")
    console.print("  [cyan]accesshub requests pending --as bob@accesshub.local[/cyan]")
    console.print("  [cyan]accesshub scenario[/cyan]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Port"),
    reload: bool = typer.Option(False, help="Reload on code changes")
):
    """Run the HTTP API server."""
    import uvicorn
    from core.config import settings

    uvicorn.run(
        "api.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower()
    )


@app.command()
def sweep():
    """Expire approved grants whose deadline has passed (run from cron)."""
    from core.logging_config import setup_logging
    from core.sweeper import sweep_once

    setup_logging()
    expired = sweep_once()
    console.print(f"[green]Expired {expired} grant(s)[/green]")


@app.command()
def scenario(
    name: str = typer.Argument("all", help="approval, self-approval, hierarchy, system-role, "
                                           "inactive-tool, race, expiry or all")
):
    """Run the scripted workflow walkthrough against the demo data."""
    from scenarios import run_scenarios

    if not run_scenarios(name):
        raise typer.Exit(code=1)


# ============================================================================
# User Commands
# ============================================================================

@users_app.command("list")
def list_users(active_only: bool = typer.Option(False, "--active", help="Hide inactive users")):
    """List all users."""
    from core.identity import IdentityStore
    from core.authorization import AuthorizationResolver

    with get_session() as session:
        resolver = AuthorizationResolver(session)

        table = Table(title="Users", box=box.ROUNDED)
        table.add_column("ID", style="cyan", justify="right")
        table.add_column("Email", style="green")
        table.add_column("Name")
        table.add_column("Roles")
        table.add_column("Status", justify="center")
        table.add_column("Created")

        for user in IdentityStore(session).list_users(active_only=active_only):
            status = "[green]Active[/green]" if user.is_active else "[red]Inactive[/red]"
            roles = ", ".join(role.name for role in resolver.get_user_roles(user.id))
            table.add_row(
                str(user.id),
                user.email,
                user.display_name,
                roles or "-",
                status,
                _fmt(user.created_at, "%Y-%m-%d")
            )

        console.print(table)


@users_app.command("create")
def create_user(
    email: str = typer.Option(..., help="Email address"),
    password: Optional[str] = typer.Option(None, help="Initial password (min 8 characters)"),
    first_name: Optional[str] = typer.Option(None, help="First name"),
    last_name: Optional[str] = typer.Option(None, help="Last name"),
    role: List[str] = typer.Option([], "--role", "-r", help="Role name (repeatable)")
):
    """Create a new user."""
    from core.identity import IdentityStore
    from models.entities import Role

    with get_session() as session:
        role_ids = []
        for name in role:
            found = session.query(Role).filter(Role.name == name).first()
            if not found:
                console.print(f"[red]Role '{name}' not found[/red]")
                raise typer.Exit(code=1)
            role_ids.append(found.id)

        user = IdentityStore(session).create_user(
            CLI_ACTOR, email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role_ids=role_ids
        )
        console.print(f"[green]Created user: {user.email} (ID: {user.id})[/green]")


@users_app.command("deactivate")
def deactivate_user(email: str = typer.Argument(..., help="Email of the user")):
    """Deactivate a user (users are never deleted)."""
    from core.identity import IdentityStore

    with get_session() as session:
        user = _find_user(session, email)
        IdentityStore(session).deactivate_user(CLI_ACTOR, user.id)
        console.print(f"[yellow]Deactivated {user.email}[/yellow]")


@users_app.command("show")
def show_user(email: str = typer.Argument(..., help="Email of the user")):
    """Show a user with roles, groups, permissions and active grants."""
    from core.identity import IdentityStore
    from core.workflow import AccessWorkflow

    with get_session() as session:
        user = _find_user(session, email)
        summary = IdentityStore(session).user_summary(user.id)

        user_info = f"""
[bold]Email:[/bold] {user.email}
[bold]Name:[/bold] {user.display_name}
[bold]Status:[/bold] {'[green]Active[/green]' if user.is_active else '[red]Inactive[/red]'}
"""
        console.print(Panel(user_info, title="User Information", box=box.ROUNDED))

        tree = Tree("[bold]Roles & Groups[/bold]")
        roles_branch = tree.add("[cyan]Roles[/cyan]")
        for role in summary["roles"]:
            roles_branch.add(f"{role.name} (level {role.hierarchy_level})")
        groups_branch = tree.add("[cyan]Groups[/cyan]")
        for group in summary["groups"]:
            groups_branch.add(group.name)
        console.print(tree)

        if summary["permissions"]:
            console.print("\n[bold]Effective Permissions:[/bold]")
            for perm in summary["permissions"]:
                console.print(f"  [green]✓[/green] {perm}")
        else:
            console.print("[yellow]No permissions[/yellow]")

        grants = AccessWorkflow(session).active_grants(user.id)
        if grants:
            console.print("\n[bold]Active Grants:[/bold]")
            for grant in grants:
                until = _fmt(grant.expires_at) if grant.expires_at else "permanent"
                console.print(f"  {grant.target_type}:{grant.target_id} "
                              f"[magenta]{grant.access_level}[/magenta] until {until}")


# ============================================================================
# Role Commands
# ============================================================================

@roles_app.command("list")
def list_roles():
    """List roles with their capabilities and permissions."""
    from core.identity import IdentityStore

    with get_session() as session:
        store = IdentityStore(session)

        for role, user_count in store.list_roles():
            flags = []
            if role.can_approve_requests:
                flags.append("approve")
            if role.can_grant_access:
                flags.append("grant")
            label = f"[bold cyan]{role.name}[/bold cyan] (ID: {role.id}, level {role.hierarchy_level}, {user_count} user(s))"
            if role.is_system_role:
                label += " [dim]system[/dim]"

            tree = Tree(label)
            if role.description:
                tree.add(f"[dim]{role.description}[/dim]")
            tree.add(f"[yellow]Capabilities:[/yellow] {', '.join(flags) or 'none'}")

            perms = store.get_role_permissions(role.id)
            if perms:
                perms_branch = tree.add("[green]Permissions[/green]")
                for perm in perms:
                    perms_branch.add(perm.name)
            else:
                tree.add("[yellow]No permissions[/yellow]")

            console.print(tree)
            console.print()


@roles_app.command("assign")
def assign_role(
    email: str = typer.Option(..., "--user", "-u", help="User email"),
    role_name: str = typer.Option(..., "--role", "-r", help="Role name")
):
    """Assign a role to a user."""
    from core.identity import IdentityStore
    from models.entities import Role

    with get_session() as session:
        user = _find_user(session, email)
        role = session.query(Role).filter(Role.name == role_name).first()
        if not role:
            console.print(f"[red]Role '{role_name}' not found[/red]")
            raise typer.Exit(code=1)

        if IdentityStore(session).assign_role(CLI_ACTOR, user.id, role.id):
            console.print(f"[green]Assigned role '{role_name}' to '{user.email}'[/green]")
        else:
            console.print(f"[yellow]'{user.email}' already has role '{role_name}'[/yellow]")


@roles_app.command("hierarchy")
def show_hierarchy():
    """Show roles ordered by hierarchy level."""
    from core.identity import IdentityStore

    with get_session() as session:
        tree = Tree("[bold]Role Hierarchy[/bold] (highest first)")
        for role in IdentityStore(session).role_hierarchy():
            tree.add(f"[cyan]{role.hierarchy_level:>4}[/cyan]  {role.name}")
        console.print(tree)


# ============================================================================
# Tool Commands
# ============================================================================

@tools_app.command("list")
def list_tools(
    category: Optional[str] = typer.Option(None, help="Filter by category"),
    active_only: bool = typer.Option(False, "--active", help="Hide inactive tools")
):
    """List the tool catalog."""
    from core.tools import ToolRegistry

    with get_session() as session:
        table = Table(title="Tool Catalog", box=box.ROUNDED)
        table.add_column("ID", style="cyan", justify="right")
        table.add_column("Name", style="green")
        table.add_column("Display Name")
        table.add_column("Category")
        table.add_column("Status", justify="center")

        for tool in ToolRegistry(session).list(category=category, active_only=active_only):
            table.add_row(
                str(tool.id),
                tool.name,
                tool.display_name,
                tool.category or "-",
                "[green]Active[/green]" if tool.is_active else "[red]Inactive[/red]"
            )

        console.print(table)


@tools_app.command("create")
def create_tool(
    name: str = typer.Option(..., help="Slug, cannot be changed later"),
    display_name: str = typer.Option(..., help="Display name"),
    category: Optional[str] = typer.Option(None, help="Category"),
    description: Optional[str] = typer.Option(None, help="Description")
):
    """Add a tool to the catalog."""
    from core.tools import ToolRegistry

    with get_session() as session:
        tool = ToolRegistry(session).create(
            CLI_ACTOR, name, display_name, description=description, category=category
        )
        console.print(f"[green]Created tool: {tool.name} (ID: {tool.id})[/green]")


@tools_app.command("add-approver")
def add_approver(
    tool_name: str = typer.Argument(..., help="Tool name"),
    email: Optional[str] = typer.Option(None, "--user", "-u", help="Approver email"),
    group_name: Optional[str] = typer.Option(None, "--group", "-g", help="Approver group")
):
    """List a user or a group as approver for a tool."""
    from core.tools import ToolRegistry
    from models.entities import Group, Tool

    with get_session() as session:
        tool = session.query(Tool).filter(Tool.name == tool_name).first()
        if not tool:
            console.print(f"[red]Tool '{tool_name}' not found[/red]")
            raise typer.Exit(code=1)

        user_id = _find_user(session, email).id if email else None
        group_id = None
        if group_name:
            group = session.query(Group).filter(Group.name == group_name).first()
            if not group:
                console.print(f"[red]Group '{group_name}' not found[/red]")
                raise typer.Exit(code=1)
            group_id = group.id

        ToolRegistry(session).add_approver(CLI_ACTOR, tool.id, user_id=user_id, group_id=group_id)
        console.print(f"[green]Approver added to {tool.name}: {email or group_name}[/green]")


# ============================================================================
# Request Commands
# ============================================================================

def _requests_table(title: str, requests) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("User")
    table.add_column("Target")
    table.add_column("Level")
    table.add_column("Status")
    table.add_column("Created", style="dim")
    table.add_column("Expires", style="dim")

    for req in requests:
        style = STATUS_STYLES.get(req.status.value, "white")
        table.add_row(
            str(req.id),
            req.user.email if req.user else str(req.user_id),
            f"{req.target_type}:{req.target_id}",
            req.access_level,
            f"[{style}]{req.status.value}[/{style}]",
            _fmt(req.created_at),
            _fmt(req.expires_at)
        )
    return table


@requests_app.command("list")
def list_requests(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="PENDING, APPROVED, ..."),
    email: Optional[str] = typer.Option(None, "--user", "-u", help="Requester email"),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum rows (up to 100)")
):
    """List access requests, most recent first."""
    from core.workflow import AccessWorkflow
    from models.entities import RequestStatus

    with get_session() as session:
        status_filter = None
        if status:
            try:
                status_filter = RequestStatus(status.upper())
            except ValueError:
                console.print(f"[red]Unknown status: {status}[/red]")
                raise typer.Exit(code=1)
        user_id = _find_user(session, email).id if email else None

        requests = AccessWorkflow(session).list_requests(status_filter, user_id, limit=limit)
        console.print(_requests_table("Access Requests", requests))


@requests_app.command("pending")
def pending_requests(email: str = typer.Option(..., "--as", help="Approver email")):
    """Show the pending requests a given approver may decide."""
    from core.workflow import AccessWorkflow

    with get_session() as session:
        approver = _find_user(session, email)
        requests = AccessWorkflow(session).pending_for(ActorContext(approver.id, user_agent="accesshub-cli"))
        if not requests:
            console.print(f"[green]Nothing waiting for {approver.email}[/green]")
            return
        console.print(_requests_table(f"Pending for {approver.email}", requests))


# ============================================================================
# Audit Commands
# ============================================================================

@audit_app.command("logs")
def view_logs(
    limit: int = typer.Option(20, "--limit", "-l", help="Number of logs to show"),
    email: Optional[str] = typer.Option(None, "--user", "-u", help="Filter by actor email"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Filter by action category"),
    action: Optional[str] = typer.Option(None, "--action", "-a", help="Filter by action (substring)")
):
    """View the most recent audit logs."""
    from core.audit import AuditFilter, AuditLogger

    with get_session() as session:
        actor_id = _find_user(session, email).id if email else None
        criteria = AuditFilter(actor_id=actor_id, action=action, action_category=category)
        page = AuditLogger(session).list(criteria, limit=limit)

        table = Table(title=f"Audit Logs ({page['total']} total)", box=box.ROUNDED)
        table.add_column("Time", style="dim")
        table.add_column("Actor", style="cyan")
        table.add_column("Action")
        table.add_column("Category")
        table.add_column("Target")
        table.add_column("Details")

        for log in page["data"]:
            table.add_row(
                _fmt(log.created_at, "%Y-%m-%d %H:%M:%S"),
                log.actor.email if log.actor else "System",
                log.action,
                log.action_category,
                f"{log.target_type}:{log.target_id}" if log.target_type else "-",
                (log.details or log.target_name or "-")[:40]
            )

        console.print(table)


@audit_app.command("categories")
def audit_categories():
    """List the action categories present in the audit log."""
    from core.audit import AuditLogger

    with get_session() as session:
        for category in AuditLogger(session).categories():
            console.print(f"  [cyan]{category}[/cyan]")


@audit_app.command("export")
def export_logs(
    output: str = typer.Option("audit_logs_export.json", "--output", "-o", help="Output file"),
    format: str = typer.Option("json", "--format", "-f", help="Format: json or csv")
):
    """Export audit logs for SIEM integration."""
    from core.audit import AuditLogger

    with get_session() as session:
        data = AuditLogger(session).export(format=format)

        with open(output, 'w') as f:
            f.write(data)

        console.print(f"[green]Exported audit logs to {output}[/green]")


# ============================================================================
# Main Entry Point
# ============================================================================

@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """
    AccessHub - access-governance backend

    Users request time-bounded access to tools; approvers decide; every
    change lands in the audit log.
    """
    if ctx.invoked_subcommand is None:
        print_banner()
        console.print("\nUse [cyan]--help[/cyan] to see available commands.\n")
        console.print("Quick Start:")
        console.print("  1. [cyan]accesshub init[/cyan]      - Initialize database")
        console.print("  2. [cyan]accesshub demo[/cyan]      - Load demo data")
        console.print("  3. [cyan]accesshub scenario[/cyan]  - Run the workflow walkthrough")
        console.print("  4. [cyan]accesshub serve[/cyan]     - Start the API server")
        console.print()


if __name__ == "__main__":
    app()
