"""Users, roles, permissions, groups, setup and bulk assignment."""
import pytest

from core.context import ActorContext
from core.exceptions import (
    AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
)
from core.identity import IdentityStore
from core.security import decode_access_token
from core.tools import TARGET_TYPE_TOOL, ToolRegistry
from models.entities import AuditLog, GroupMember, Permission, Role, ToolApprover, User, UserRole


@pytest.fixture
def identity(session):
    return IdentityStore(session)


def _permission_id(session, name):
    return session.query(Permission.id).filter(Permission.name == name).scalar()


class TestSetupAndLogin:

    def test_setup_only_once(self, session, identity):
        ctx = ActorContext(None, "127.0.0.1", "pytest")
        assert identity.check_setup() == {"setup_required": True}

        result = identity.setup("Root@Acme.io", "correct-horse", ctx)
        assert result["roles"] == ["super_admin"]
        assert decode_access_token(result["token"])["sub"] == str(result["user_id"])
        assert session.get(User, result["user_id"]).email == "root@acme.io"
        assert identity.check_setup() == {"setup_required": False}

        with pytest.raises(AuthorizationError):
            identity.setup("second@acme.io", "correct-horse", ctx)

    def test_setup_rejects_short_password(self, identity):
        with pytest.raises(ValidationError):
            identity.setup("root@acme.io", "short", ActorContext(None))

    def test_login(self, session, identity):
        identity.setup("root@acme.io", "correct-horse", ActorContext(None))
        result = identity.login(" ROOT@acme.io ", "correct-horse", ActorContext(None, "10.1.1.1"))
        assert result["roles"] == ["super_admin"]

        row = session.query(AuditLog).filter(AuditLog.action == "login").one()
        assert row.actor_id == result["user_id"]
        assert row.ip_address == "10.1.1.1"

    def test_login_failures(self, identity):
        setup = identity.setup("root@acme.io", "correct-horse", ActorContext(None))
        with pytest.raises(AuthenticationError):
            identity.login("root@acme.io", "wrong-horse", ActorContext(None))
        with pytest.raises(AuthenticationError):
            identity.login("nobody@acme.io", "correct-horse", ActorContext(None))

        identity.create_user(ActorContext(setup["user_id"]), "other@acme.io", password="other-pass")
        other = identity.session.query(User).filter(User.email == "other@acme.io").one()
        identity.deactivate_user(ActorContext(setup["user_id"]), other.id)
        with pytest.raises(AuthenticationError):
            identity.login("other@acme.io", "other-pass", ActorContext(None))


class TestUsers:

    def test_duplicate_email(self, identity, org):
        with pytest.raises(ConflictError):
            identity.create_user(org.admin, "ALICE@acme.io")

    def test_unknown_role_on_create(self, identity, org):
        with pytest.raises(NotFoundError):
            identity.create_user(org.admin, "eve@acme.io", role_ids=[999])

    def test_update_user(self, identity, org):
        user = identity.update_user(org.admin, org.dave.actor_id, first_name="David")
        assert user.first_name == "David"
        with pytest.raises(ValidationError):
            identity.update_user(org.admin, org.dave.actor_id, email="x@acme.io")
        with pytest.raises(ValidationError):
            identity.update_user(org.admin, org.dave.actor_id)

    def test_cannot_deactivate_self(self, identity, org):
        with pytest.raises(ValidationError):
            identity.deactivate_user(org.admin, org.admin.actor_id)

    def test_update_cannot_change_active_flag(self, session, identity, org):
        for user_id in (org.admin.actor_id, org.dave.actor_id):
            with pytest.raises(ValidationError):
                identity.update_user(org.admin, user_id, is_active=False)

        assert session.get(User, org.admin.actor_id).is_active is True
        assert session.get(User, org.dave.actor_id).is_active is True
        assert session.query(AuditLog).filter(AuditLog.action == "user_updated").count() == 0

    def test_user_summary(self, identity, org):
        summary = identity.user_summary(org.carol.actor_id)
        assert [r.name for r in summary["roles"]] == ["admin"]
        assert [g.name for g in summary["groups"]] == ["sre-leads"]
        assert "access.grant" in summary["permissions"]

    def test_role_assignment_is_idempotent(self, session, identity, org):
        assert identity.assign_role(org.admin, org.alice.actor_id, org.roles["manager"])
        assert not identity.assign_role(org.admin, org.alice.actor_id, org.roles["manager"])
        assert identity.remove_role(org.admin, org.alice.actor_id, org.roles["manager"])
        assert not identity.remove_role(org.admin, org.alice.actor_id, org.roles["manager"])
        assert session.query(AuditLog).filter(AuditLog.action == "role_assigned").count() == 1

    def test_set_user_roles(self, session, identity, org):
        identity.set_user_roles(org.admin, org.alice.actor_id, [org.roles["manager"], org.roles["admin"]])
        held = {r.name for r in identity.resolver.get_user_roles(org.alice.actor_id)}
        assert held == {"manager", "admin"}


class TestRoles:

    def test_system_role_cannot_be_deleted(self, session, identity, org):
        with pytest.raises(ConflictError):
            identity.delete_role(org.admin, org.roles["super_admin"])
        assert session.get(Role, org.roles["super_admin"]) is not None

    def test_role_in_use_cannot_be_deleted(self, identity, org):
        role = identity.create_role(org.admin, "auditor", "Auditor", hierarchy_level=20)
        identity.assign_role(org.admin, org.dave.actor_id, role.id)
        with pytest.raises(ConflictError):
            identity.delete_role(org.admin, role.id)

        identity.remove_role(org.admin, org.dave.actor_id, role.id)
        identity.delete_role(org.admin, role.id)
        with pytest.raises(NotFoundError):
            identity.get_role(role.id)

    def test_system_role_hierarchy_floor(self, identity, org):
        with pytest.raises(ValidationError):
            identity.update_role(org.admin, org.roles["manager"], hierarchy_level=5)
        role = identity.update_role(org.admin, org.roles["manager"], hierarchy_level=60)
        assert role.hierarchy_level == 60

    def test_duplicate_and_invalid_names(self, identity, org):
        with pytest.raises(ConflictError):
            identity.create_role(org.admin, "admin", "Again")
        with pytest.raises(ValidationError):
            identity.create_role(org.admin, "Not A Slug", "Bad")

    def test_set_role_permissions_replaces_set(self, session, identity, org):
        ids = [_permission_id(session, "tools.read"), _permission_id(session, "audit.read")]
        identity.set_role_permissions(org.admin, org.roles["user"], ids)
        names = [p.name for p in identity.get_role_permissions(org.roles["user"])]
        assert names == ["audit.read", "tools.read"]

    def test_set_role_permissions_unknown_id_changes_nothing(self, session, identity, org):
        before = [p.name for p in identity.get_role_permissions(org.roles["user"])]
        with pytest.raises(NotFoundError):
            identity.set_role_permissions(org.admin, org.roles["user"], [_permission_id(session, "audit.read"), 999])
        assert [p.name for p in identity.get_role_permissions(org.roles["user"])] == before

    def test_list_roles_counts_users(self, identity, org):
        counts = {role.name: count for role, count in identity.list_roles()}
        assert counts == {"super_admin": 1, "admin": 1, "manager": 1, "user": 2}
        assert [r.name for r in identity.role_hierarchy()] == ["super_admin", "admin", "manager", "user"]


class TestPermissionCatalog:

    def test_in_use_permission_is_frozen(self, session, identity, org):
        perm_id = _permission_id(session, "tools.read")
        with pytest.raises(ConflictError):
            identity.update_permission(org.admin, perm_id, name="tools.view")
        with pytest.raises(ConflictError):
            identity.delete_permission(org.admin, perm_id)

        perm = identity.update_permission(org.admin, perm_id, display_name="See Tools")
        assert perm.display_name == "See Tools"

    def test_unused_permission_lifecycle(self, identity, org):
        perm = identity.create_permission(org.admin, "reports.read", "Read Reports", "reports")
        assert "reports" in identity.permission_categories()

        identity.update_permission(org.admin, perm.id, name="reports.view")
        identity.delete_permission(org.admin, perm.id)
        with pytest.raises(NotFoundError):
            identity.get_permission(perm.id)


class TestGroups:

    def test_add_members_is_idempotent(self, session, identity, org):
        assert identity.add_members(org.admin, org.sre_group, [org.carol.actor_id, org.bob.actor_id]) == 1
        assert identity.add_members(org.admin, org.sre_group, [org.bob.actor_id]) == 0
        assert session.query(GroupMember).filter(GroupMember.group_id == org.sre_group).count() == 2

    def test_add_unknown_member(self, identity, org):
        with pytest.raises(NotFoundError):
            identity.add_members(org.admin, org.sre_group, [org.bob.actor_id, 999])
        assert len(identity.list_members(org.sre_group)) == 1

    def test_remove_member(self, identity, org):
        assert identity.remove_member(org.admin, org.sre_group, org.carol.actor_id)
        assert not identity.remove_member(org.admin, org.sre_group, org.carol.actor_id)

    def test_delete_group_drops_approver_listing(self, session, identity, org):
        identity.delete_group(org.admin, org.sre_group)
        assert session.query(ToolApprover).filter(ToolApprover.group_id == org.sre_group).count() == 0
        assert ToolRegistry(session).list_approvers(org.tools["prod-db"]) == []

    def test_group_counts(self, identity, org):
        assert [(g.name, n) for g, n in identity.list_groups()] == [("sre-leads", 1)]


class TestBulk:

    def test_bulk_assign_roles_skips_existing_and_counts_failures(self, session, identity, org):
        result = identity.bulk_assign_roles(
            org.admin, [org.alice.actor_id, org.dave.actor_id, 999], [org.roles["user"], org.roles["manager"]]
        )
        # alice and dave already hold user; 999 fails twice
        assert (result.count, result.failed) == (2, 2)
        assert session.query(AuditLog).filter(AuditLog.action_category == "bulk").count() == 1

    def test_bulk_remove_roles(self, identity, org):
        result = identity.bulk_remove_roles(org.admin, [org.alice.actor_id, org.dave.actor_id], [org.roles["user"]])
        assert result.count == 2
        assert identity.resolver.get_user_roles(org.alice.actor_id) == []

    def test_bulk_add_to_groups(self, identity, org):
        other = identity.create_group(org.admin, "on-call", "On Call")
        result = identity.bulk_add_to_groups(
            org.admin, [org.carol.actor_id, org.bob.actor_id], [org.sre_group, other.id]
        )
        assert (result.count, result.failed) == (3, 0)

    def test_bulk_group_permissions(self, session, identity, org):
        perm = _permission_id(session, "audit.read")
        result = identity.bulk_assign_group_permissions(org.admin, [org.sre_group, 999], [perm])
        assert (result.count, result.failed) == (1, 1)
        assert [p.name for p in identity.get_group_permissions(org.sre_group)] == ["audit.read"]

    @pytest.mark.parametrize("method", [
        "bulk_assign_roles", "bulk_remove_roles", "bulk_add_to_groups", "bulk_assign_group_permissions"
    ])
    def test_empty_input(self, identity, org, method):
        with pytest.raises(ValidationError):
            getattr(identity, method)(org.admin, [], [1])


class TestTools:

    def test_tool_name_is_immutable(self, session, org):
        registry = ToolRegistry(session)
        with pytest.raises(ValidationError):
            registry.update(org.admin, org.tools["github"], name="gitlab")
        tool = registry.update(org.admin, org.tools["github"], display_name="GitHub")
        assert tool.display_name == "GitHub"

    def test_deactivation_is_audited(self, session, org):
        ToolRegistry(session).update(org.admin, org.tools["jenkins"], is_active=False)
        assert session.query(AuditLog).filter(AuditLog.action == "tool_deactivated").count() == 1

    def test_referenced_tool_cannot_be_deleted(self, session, org):
        from core.workflow import AccessWorkflow

        registry = ToolRegistry(session)
        AccessWorkflow(session).create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["jenkins"])
        with pytest.raises(ConflictError):
            registry.delete(org.admin, org.tools["jenkins"])

        registry.delete(org.admin, org.tools["prod-db"])
        with pytest.raises(NotFoundError):
            registry.get(org.tools["prod-db"])

    def test_approver_needs_exactly_one_subject(self, session, org):
        registry = ToolRegistry(session)
        with pytest.raises(ValidationError):
            registry.add_approver(org.admin, org.tools["jenkins"])
        with pytest.raises(ValidationError):
            registry.add_approver(org.admin, org.tools["jenkins"], user_id=org.bob.actor_id, group_id=org.sre_group)

    def test_add_approver_is_idempotent(self, session, org):
        registry = ToolRegistry(session)
        first = registry.add_approver(org.admin, org.tools["github"], user_id=org.bob.actor_id)
        assert len(registry.list_approvers(org.tools["github"])) == 1
        assert registry.remove_approver(org.admin, org.tools["github"], first.id)
        assert not registry.remove_approver(org.admin, org.tools["github"], first.id)

    def test_user_role_rows_cascade_with_role(self, session, identity, org):
        role = identity.create_role(org.admin, "temp", "Temp")
        identity.set_role_permissions(org.admin, role.id, [_permission_id(session, "tools.read")])
        identity.delete_role(org.admin, role.id)
        assert session.query(UserRole).filter(UserRole.role_id == role.id).count() == 0
