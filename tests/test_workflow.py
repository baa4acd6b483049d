"""Access request lifecycle: creation, decisions, revocation, expiry and bulk grants."""
import threading
import time
from datetime import timedelta

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from core.exceptions import (
    AuthorizationError, ConflictError, InvalidStateError, NotFoundError, ValidationError
)
from core.identity import IdentityStore
from core.tools import TARGET_TYPE_TOOL, ToolRegistry
from core.workflow import AccessWorkflow, compute_expiry
from models.database import get_session
from models.entities import ALLOWED_TRANSITIONS, AccessRequest, AuditLog, RequestStatus, utcnow


def _audit_actions(session, request_id):
    rows = (
        session.query(AuditLog.action)
        .filter(AuditLog.target_type == "access_request", AuditLog.target_id == request_id)
        .order_by(AuditLog.id)
        .all()
    )
    return [row[0] for row in rows]


@pytest.fixture
def workflow(session):
    return AccessWorkflow(session)


@pytest.fixture
def pending(workflow, org):
    """alice asks bob for 60 minutes of write access to github."""
    return workflow.create_access_request(
        org.alice, TARGET_TYPE_TOOL, org.tools["github"], "write", "deploy hotfix", 60
    )


# ============================================================================
# Creation
# ============================================================================

class TestCreateRequest:

    def test_creates_pending_request_with_audit(self, session, workflow, pending, org):
        assert pending.status == RequestStatus.PENDING
        assert pending.user_id == org.alice.actor_id
        assert pending.expires_at is None
        assert _audit_actions(session, pending.id) == ["request_created"]

    def test_access_level_defaults_to_read(self, workflow, org):
        request = workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["jenkins"])
        assert request.access_level == "read"
        assert request.duration_minutes is None

    def test_duplicate_pending_request_conflicts(self, workflow, pending, org):
        with pytest.raises(ConflictError):
            workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "write")

    def test_other_access_level_is_not_a_duplicate(self, workflow, pending, org):
        other = workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "read")
        assert other.id != pending.id

    def test_new_request_allowed_after_decision(self, workflow, pending, org):
        workflow.reject_request(org.bob, pending.id, "not now")
        again = workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "write")
        assert again.status == RequestStatus.PENDING

    def test_inactive_tool_is_rejected(self, session, workflow, org):
        with pytest.raises(ValidationError):
            workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["legacy-crm"])
        assert session.query(AccessRequest).count() == 0

    def test_unknown_tool_is_rejected(self, workflow, org):
        with pytest.raises(ValidationError):
            workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, 9999)

    def test_unsupported_target_type(self, workflow, org):
        with pytest.raises(ValidationError):
            workflow.create_access_request(org.alice, "database", org.tools["github"])

    def test_unknown_access_level(self, workflow, org):
        with pytest.raises(ValidationError):
            workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "root")

    @pytest.mark.parametrize("duration", [0, -5])
    def test_non_positive_duration(self, workflow, org, duration):
        with pytest.raises(ValidationError):
            workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "read", None, duration)

    def test_inactive_requester(self, session, workflow, org):
        IdentityStore(session).deactivate_user(org.admin, org.alice.actor_id)
        with pytest.raises(AuthorizationError):
            workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"])


# ============================================================================
# Decisions
# ============================================================================

class TestApprove:

    def test_approve_sets_expiry_from_requested_duration(self, session, workflow, pending, org):
        approved = workflow.approve_request(org.bob, pending.id)

        assert approved.status == RequestStatus.APPROVED
        assert approved.approved_by == org.bob.actor_id
        assert approved.approver_id == org.bob.actor_id
        assert approved.expires_at == approved.approved_at + timedelta(minutes=60)
        assert _audit_actions(session, pending.id) == ["request_created", "request_approved"]

    def test_approver_duration_overrides_request(self, workflow, pending, org):
        approved = workflow.approve_request(org.bob, pending.id, duration_minutes=15)
        assert approved.duration_minutes == 15
        assert approved.expires_at == approved.approved_at + timedelta(minutes=15)

    def test_no_duration_means_permanent(self, workflow, org):
        request = workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "read")
        approved = workflow.approve_request(org.bob, request.id)
        assert approved.expires_at is None

    def test_self_approval_is_refused(self, session, workflow, org):
        request = workflow.create_access_request(org.bob, TARGET_TYPE_TOOL, org.tools["github"], "read")
        with pytest.raises(AuthorizationError):
            workflow.approve_request(org.bob, request.id)
        session.refresh(request)
        assert request.status == RequestStatus.PENDING

    def test_non_approver_role_is_refused(self, workflow, pending, org):
        with pytest.raises(AuthorizationError):
            workflow.approve_request(org.dave, pending.id)

    def test_approver_not_listed_for_tool(self, workflow, org):
        # bob approves github and aws-console only
        request = workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["prod-db"], "read")
        with pytest.raises(AuthorizationError):
            workflow.approve_request(org.bob, request.id)

    def test_group_approver(self, workflow, org):
        request = workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["prod-db"], "write")
        approved = workflow.approve_request(org.carol, request.id)
        assert approved.approved_by == org.carol.actor_id

    def test_hierarchy_threshold(self, workflow, org):
        request = workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "admin")
        with pytest.raises(AuthorizationError):
            workflow.approve_request(org.bob, request.id)

    def test_raised_threshold_applies_to_existing_requests(self, session, workflow, pending, org):
        ToolRegistry(session).set_privilege_level(org.admin, "write", 60)
        with pytest.raises(AuthorizationError):
            workflow.approve_request(org.bob, pending.id)

    def test_unknown_request(self, workflow, org):
        with pytest.raises(NotFoundError):
            workflow.approve_request(org.bob, 4242)


class TestReject:

    def test_reject_records_reason(self, session, workflow, pending, org):
        rejected = workflow.reject_request(org.bob, pending.id, "use read access")

        assert rejected.status == RequestStatus.REJECTED
        assert rejected.rejected_by == org.bob.actor_id
        assert rejected.rejection_reason == "use read access"
        assert rejected.expires_at is None
        assert _audit_actions(session, pending.id) == ["request_created", "request_rejected"]

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_reason_is_required(self, workflow, pending, org, reason):
        with pytest.raises(ValidationError):
            workflow.reject_request(org.bob, pending.id, reason)

    def test_requester_cannot_reject_own_request(self, workflow, org):
        request = workflow.create_access_request(org.bob, TARGET_TYPE_TOOL, org.tools["aws-console"], "read")
        with pytest.raises(AuthorizationError):
            workflow.reject_request(org.bob, request.id, "never mind")


class TestDecisionRace:

    def test_second_decision_loses(self, session, workflow, org):
        # both bob (direct) and carol (via sre-leads) approve aws-console
        ToolRegistry(session).add_approver(org.admin, org.tools["aws-console"], group_id=org.sre_group)
        request = workflow.create_access_request(org.dave, TARGET_TYPE_TOOL, org.tools["aws-console"], "read")

        workflow.approve_request(org.bob, request.id)
        with pytest.raises(InvalidStateError):
            workflow.reject_request(org.carol, request.id, "too late")

        session.refresh(request)
        assert request.status == RequestStatus.APPROVED
        assert request.rejected_by is None
        assert _audit_actions(session, request.id) == ["request_created", "request_approved"]

    def test_concurrent_decisions_have_one_winner(self, committed_org):
        org = committed_org
        with get_session() as s:
            ToolRegistry(s).add_approver(org.admin, org.tools["aws-console"], group_id=org.sre_group)
            request_id = AccessWorkflow(s).create_access_request(
                org.dave, TARGET_TYPE_TOOL, org.tools["aws-console"], "read"
            ).id

        approver_started = threading.Event()
        outcomes = {}

        def approve():
            try:
                with get_session() as s:
                    workflow = AccessWorkflow(s)
                    workflow.get_request(request_id)
                    approver_started.set()
                    # hold the transaction open while the rejecter starts
                    time.sleep(0.3)
                    workflow.approve_request(org.bob, request_id)
                outcomes["approve"] = "ok"
            except Exception as e:
                approver_started.set()
                outcomes["approve"] = type(e).__name__

        def reject():
            approver_started.wait(5)
            try:
                with get_session() as s:
                    AccessWorkflow(s).reject_request(org.carol, request_id, "too late")
                outcomes["reject"] = "ok"
            except Exception as e:
                outcomes["reject"] = type(e).__name__

        threads = [threading.Thread(target=approve), threading.Thread(target=reject)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)

        assert outcomes == {"approve": "ok", "reject": "InvalidStateError"}
        with get_session() as s:
            assert s.get(AccessRequest, request_id).status == RequestStatus.APPROVED
            assert _audit_actions(s, request_id) == ["request_created", "request_approved"]

    def test_double_approve(self, session, workflow, pending, org):
        workflow.approve_request(org.bob, pending.id)
        with pytest.raises(InvalidStateError):
            workflow.approve_request(org.bob, pending.id)
        assert _audit_actions(session, pending.id).count("request_approved") == 1


# ============================================================================
# Revocation
# ============================================================================

class TestRevoke:

    def test_revoke_access_is_idempotent(self, session, workflow, pending, org):
        workflow.approve_request(org.bob, pending.id)

        assert workflow.revoke_access(org.carol, org.alice.actor_id, TARGET_TYPE_TOOL, org.tools["github"]) == 1
        assert workflow.revoke_access(org.carol, org.alice.actor_id, TARGET_TYPE_TOOL, org.tools["github"]) == 0

        session.refresh(pending)
        assert pending.status == RequestStatus.REVOKED
        assert pending.revoked_by == org.carol.actor_id
        assert pending.expires_at is not None
        assert _audit_actions(session, pending.id).count("access_revoked") == 1

    def test_revoke_without_grant_is_a_noop(self, workflow, org):
        assert workflow.revoke_access(org.carol, org.dave.actor_id, TARGET_TYPE_TOOL, org.tools["jenkins"]) == 0

    def test_revoke_leaves_pending_requests_alone(self, session, workflow, pending, org):
        workflow.revoke_access(org.carol, org.alice.actor_id, TARGET_TYPE_TOOL, org.tools["github"])
        session.refresh(pending)
        assert pending.status == RequestStatus.PENDING

    def test_revoke_requires_grant_capability(self, workflow, pending, org):
        workflow.approve_request(org.bob, pending.id)
        with pytest.raises(AuthorizationError):
            workflow.revoke_access(org.bob, org.alice.actor_id, TARGET_TYPE_TOOL, org.tools["github"])

    def test_revoke_request_only_from_approved(self, workflow, pending, org):
        with pytest.raises(InvalidStateError):
            workflow.revoke_request(org.carol, pending.id)

        workflow.approve_request(org.bob, pending.id)
        revoked = workflow.revoke_request(org.carol, pending.id)
        assert revoked.status == RequestStatus.REVOKED

        with pytest.raises(InvalidStateError):
            workflow.revoke_request(org.carol, pending.id)


# ============================================================================
# Expiry
# ============================================================================

class TestExpiry:

    def test_compute_expiry(self):
        now = utcnow()
        assert compute_expiry(now, None) is None
        assert compute_expiry(now, 90) == now + timedelta(minutes=90)

    def test_sweep_expires_exactly_once(self, session, workflow, pending, org):
        approved = workflow.approve_request(org.bob, pending.id)

        assert workflow.expire_due(approved.expires_at - timedelta(seconds=1)) == 0
        assert workflow.expire_due(approved.expires_at) == 1
        assert workflow.expire_due(approved.expires_at + timedelta(hours=1)) == 0

        session.refresh(approved)
        assert approved.status == RequestStatus.EXPIRED
        assert _audit_actions(session, approved.id)[-1] == "access_expired"

        system_row = session.query(AuditLog).filter(AuditLog.action == "access_expired").one()
        assert system_row.actor_id is None

    def test_permanent_grants_never_expire(self, workflow, org):
        grant = workflow.direct_grant(org.carol, org.dave.actor_id, TARGET_TYPE_TOOL, org.tools["jenkins"])
        assert workflow.expire_due(utcnow() + timedelta(days=3650)) == 0
        assert grant.status == RequestStatus.APPROVED

    def test_revoked_grant_is_not_expired(self, session, workflow, pending, org):
        approved = workflow.approve_request(org.bob, pending.id)
        workflow.revoke_request(org.carol, approved.id)
        assert workflow.expire_due(approved.expires_at + timedelta(minutes=1)) == 0


# ============================================================================
# Direct and bulk grants
# ============================================================================

class TestDirectGrant:

    def test_direct_grant_is_approved_immediately(self, session, workflow, org):
        grant = workflow.direct_grant(
            org.carol, org.dave.actor_id, TARGET_TYPE_TOOL, org.tools["prod-db"], "read", 30, "incident"
        )
        assert grant.status == RequestStatus.APPROVED
        assert grant.user_id == org.dave.actor_id
        assert grant.approved_by == org.carol.actor_id
        assert grant.expires_at == grant.approved_at + timedelta(minutes=30)
        assert _audit_actions(session, grant.id) == ["access_granted"]

    def test_manager_cannot_grant(self, workflow, org):
        with pytest.raises(AuthorizationError):
            workflow.direct_grant(org.bob, org.dave.actor_id, TARGET_TYPE_TOOL, org.tools["github"])

    def test_inactive_grantee(self, session, workflow, org):
        IdentityStore(session).deactivate_user(org.admin, org.dave.actor_id)
        with pytest.raises(ValidationError):
            workflow.direct_grant(org.carol, org.dave.actor_id, TARGET_TYPE_TOOL, org.tools["github"])

    def test_active_grants(self, workflow, pending, org):
        workflow.approve_request(org.bob, pending.id)
        workflow.direct_grant(org.carol, org.alice.actor_id, TARGET_TYPE_TOOL, org.tools["jenkins"])
        assert len(workflow.active_grants(org.alice.actor_id)) == 2
        assert workflow.active_grants(org.dave.actor_id) == []


class TestBulkGrant:

    def test_partial_failure_keeps_valid_pairs(self, session, workflow, org):
        result = workflow.bulk_grant_access(
            org.carol,
            [org.alice.actor_id, org.dave.actor_id],
            [org.tools["github"], org.tools["legacy-crm"]],
            "read", 60
        )
        assert (result.count, result.failed) == (2, 2)

        grants = session.query(AccessRequest).filter(AccessRequest.status == RequestStatus.APPROVED).all()
        assert {g.target_id for g in grants} == {org.tools["github"]}
        assert session.query(AuditLog).filter(AuditLog.action == "bulk_access_granted").count() == 1

    def test_empty_lists(self, workflow, org):
        with pytest.raises(ValidationError):
            workflow.bulk_grant_access(org.carol, [], [org.tools["github"]])


# ============================================================================
# Queries
# ============================================================================

class TestQueries:

    def test_pending_for_lists_only_decidable_requests(self, workflow, org):
        github = workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "read")
        workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"], "admin")
        workflow.create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["prod-db"], "read")
        workflow.create_access_request(org.bob, TARGET_TYPE_TOOL, org.tools["aws-console"], "read")

        assert [r.id for r in workflow.pending_for(org.bob)] == [github.id]

    def test_pending_for_requires_approving_role(self, workflow, org):
        with pytest.raises(AuthorizationError):
            workflow.pending_for(org.alice)

    def test_my_requests_and_list_filters(self, workflow, pending, org):
        workflow.create_access_request(org.dave, TARGET_TYPE_TOOL, org.tools["jenkins"], "read")

        assert [r.id for r in workflow.my_requests(org.alice)] == [pending.id]
        assert len(workflow.list_requests()) == 2
        assert [r.id for r in workflow.list_requests(user_id=org.alice.actor_id)] == [pending.id]
        assert workflow.list_requests(status=RequestStatus.APPROVED) == []


# ============================================================================
# State machine property
# ============================================================================

OPERATIONS = st.lists(st.sampled_from(["approve", "reject", "revoke", "expire"]), min_size=1, max_size=6)


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(operations=OPERATIONS)
def test_status_only_moves_along_allowed_edges(session, org, operations):
    workflow = AccessWorkflow(session)
    savepoint = session.begin_nested()
    try:
        request = workflow.create_access_request(
            org.alice, TARGET_TYPE_TOOL, org.tools["github"], "read", "property", 30
        )
        transitions = 0
        for op in operations:
            before = request.status
            try:
                if op == "approve":
                    workflow.approve_request(org.bob, request.id)
                elif op == "reject":
                    workflow.reject_request(org.bob, request.id, "no")
                elif op == "revoke":
                    workflow.revoke_request(org.carol, request.id)
                else:
                    workflow.expire_due(utcnow() + timedelta(days=1))
            except InvalidStateError:
                pass
            session.refresh(request)

            if request.status != before:
                assert request.status in ALLOWED_TRANSITIONS[before]
                transitions += 1
            if request.status == RequestStatus.APPROVED:
                assert request.expires_at == request.approved_at + timedelta(minutes=30)

        # one audit row for the creation plus one per transition
        assert len(_audit_actions(session, request.id)) == 1 + transitions
    finally:
        savepoint.rollback()
