"""Operator CLI."""
import json

import pytest
from typer.testing import CliRunner

from cli.main import app
from models.database import get_session
from models.entities import AccessRequest, RequestStatus, User

runner = CliRunner()


def test_banner_without_command():
    result = runner.invoke(app, [])
    assert result.exit_code == 0
    assert "ACCESSHUB" in result.output


def test_init_is_repeatable():
    assert runner.invoke(app, ["init"]).exit_code == 0
    assert runner.invoke(app, ["init"]).exit_code == 0


@pytest.mark.usefixtures("committed_org")
class TestAdminCommands:

    def test_users_list(self):
        result = runner.invoke(app, ["users", "list"])
        assert result.exit_code == 0
        assert "alice@acme.io" in result.output

    def test_users_create_and_duplicate(self):
        result = runner.invoke(app, ["users", "create", "--email", "eve@acme.io", "--role", "user"])
        assert result.exit_code == 0
        assert "Created user: eve@acme.io" in result.output

        again = runner.invoke(app, ["users", "create", "--email", "eve@acme.io"])
        assert again.exit_code == 1
        assert "ConflictError" in again.output

    def test_users_create_unknown_role(self):
        result = runner.invoke(app, ["users", "create", "--email", "eve@acme.io", "--role", "wizard"])
        assert result.exit_code == 1
        with get_session() as session:
            assert session.query(User).filter(User.email == "eve@acme.io").first() is None

    def test_users_deactivate(self):
        result = runner.invoke(app, ["users", "deactivate", "dave@acme.io"])
        assert result.exit_code == 0
        with get_session() as session:
            assert session.query(User).filter(User.email == "dave@acme.io").one().is_active is False

    def test_users_show(self):
        result = runner.invoke(app, ["users", "show", "carol@acme.io"])
        assert result.exit_code == 0
        assert "sre-leads" in result.output
        assert "access.grant" in result.output

    def test_unknown_user(self):
        result = runner.invoke(app, ["users", "show", "nobody@acme.io"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_roles(self):
        assert "super_admin" in runner.invoke(app, ["roles", "hierarchy"]).output
        assert runner.invoke(app, ["roles", "list"]).exit_code == 0

        result = runner.invoke(app, ["roles", "assign", "--user", "alice@acme.io", "--role", "manager"])
        assert "Assigned role 'manager'" in result.output
        result = runner.invoke(app, ["roles", "assign", "--user", "alice@acme.io", "--role", "manager"])
        assert "already has role" in result.output

    def test_tools(self):
        result = runner.invoke(app, ["tools", "create", "--name", "grafana", "--display-name", "Grafana"])
        assert result.exit_code == 0
        assert "Created tool: grafana" in result.output

        result = runner.invoke(app, ["tools", "add-approver", "grafana", "--group", "sre-leads"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["tools", "add-approver", "grafana"])
        assert result.exit_code == 1
        assert "ValidationError" in result.output

        assert "grafana" in runner.invoke(app, ["tools", "list"]).output

    def test_requests_pending_and_list(self, committed_org):
        from core.tools import TARGET_TYPE_TOOL
        from core.workflow import AccessWorkflow

        with get_session() as session:
            AccessWorkflow(session).create_access_request(
                committed_org.alice, TARGET_TYPE_TOOL, committed_org.tools["github"]
            )

        pending = runner.invoke(app, ["requests", "pending", "--as", "bob@acme.io"])
        assert pending.exit_code == 0
        assert "PENDING" in pending.output

        nothing = runner.invoke(app, ["requests", "pending", "--as", "carol@acme.io"])
        assert "Nothing waiting" in nothing.output

        refused = runner.invoke(app, ["requests", "pending", "--as", "alice@acme.io"])
        assert refused.exit_code == 1

        assert runner.invoke(app, ["requests", "list", "--status", "bogus"]).exit_code == 1
        assert runner.invoke(app, ["requests", "list", "--status", "pending"]).exit_code == 0

    def test_sweep(self, committed_org):
        from datetime import timedelta
        from core.tools import TARGET_TYPE_TOOL
        from core.workflow import AccessWorkflow
        from models.entities import utcnow

        with get_session() as session:
            grant = AccessWorkflow(session).direct_grant(
                committed_org.carol, committed_org.dave.actor_id, TARGET_TYPE_TOOL,
                committed_org.tools["jenkins"], "read", 5
            )
            grant.expires_at = utcnow() - timedelta(minutes=1)

        result = runner.invoke(app, ["sweep"])
        assert result.exit_code == 0
        assert "Expired 1 grant(s)" in result.output

        with get_session() as session:
            statuses = {r.status for r in session.query(AccessRequest).all()}
        assert statuses == {RequestStatus.EXPIRED}

    def test_audit_commands(self, tmp_path):
        assert runner.invoke(app, ["audit", "logs", "--category", "tool"]).exit_code == 0
        assert "tool" in runner.invoke(app, ["audit", "categories"]).output

        output = tmp_path / "export.json"
        result = runner.invoke(app, ["audit", "export", "--output", str(output)])
        assert result.exit_code == 0
        assert len(json.loads(output.read_text())) == 15

        bad = runner.invoke(app, ["audit", "export", "--output", str(tmp_path / "x"), "--format", "xml"])
        assert bad.exit_code == 1


def test_demo_and_walkthrough():
    assert runner.invoke(app, ["demo"]).exit_code == 0

    result = runner.invoke(app, ["scenario"])
    assert result.exit_code == 0, result.output
    assert "7 passed" in result.output

    # scenarios roll back, so they can run again
    assert runner.invoke(app, ["scenario", "race"]).exit_code == 0
    assert runner.invoke(app, ["scenario", "nope"]).exit_code == 1
