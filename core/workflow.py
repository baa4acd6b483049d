"""
Access Request Workflow
=======================

The access request state machine:

    PENDING  -> APPROVED | REJECTED
    APPROVED -> REVOKED  | EXPIRED

REJECTED, REVOKED and EXPIRED are terminal. Every transition is a single
compare-and-set UPDATE filtered on the expected status; when it matches no
row the caller lost a race (or the request had already moved on) and gets
InvalidStateError. The transition and its audit row share one transaction.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from models.entities import (
    AccessRequest, RequestStatus, ALLOWED_TRANSITIONS, Tool, User, utcnow
)
from .audit import AuditLogger
from .authorization import AuthorizationResolver
from .config import settings
from .context import ActorContext
from .exceptions import (
    AccessHubError, AuthorizationError, ConflictError, InvalidStateError,
    NotFoundError, ValidationError
)
from .identity import BulkResult
from .tools import TARGET_TYPE_TOOL
from .validators import validate_duration, validate_required

logger = logging.getLogger(__name__)

AUDIT_CATEGORY = 'access_request'
REQUEST_TYPE = 'tool_access'
LIST_LIMIT = 100


def compute_expiry(approved_at: datetime, duration_minutes: Optional[int]) -> Optional[datetime]:
    """Expiry of a grant; None for permanent grants."""
    if duration_minutes is None:
        return None
    return approved_at + timedelta(minutes=duration_minutes)


class AccessWorkflow:
    """
    Service driving access requests through their lifecycle.

    Every mutating call takes the acting user's ActorContext; authorization
    is decided by AuthorizationResolver before any state is touched.
    """

    def __init__(self, session: Session):
        """
        Initialize the workflow with a database session.

        Args:
            session: SQLAlchemy session; the caller owns commit/rollback
        """
        self.session = session
        self.audit = AuditLogger(session)
        self.resolver = AuthorizationResolver(session)

    # ========================================================================
    # Helpers
    # ========================================================================

    def get_request(self, request_id: int) -> AccessRequest:
        request = self.session.get(AccessRequest, request_id)
        if request is None:
            raise NotFoundError("Access request")
        return request

    def _require_active_actor(self, ctx: ActorContext) -> User:
        user = self.resolver.active_user(ctx.actor_id)
        if user is None:
            raise AuthorizationError(f"actor {ctx.actor_id} is unknown or inactive")
        return user

    def _validate_target(self, target_type: str, target_id: int) -> Tool:
        """The target must be an existing, active tool."""
        if target_type != TARGET_TYPE_TOOL:
            raise ValidationError(f"Unsupported target_type: {target_type!r}")
        tool = self.session.get(Tool, target_id)
        if tool is None or not tool.is_active:
            raise ValidationError("Target tool does not exist or is inactive")
        return tool

    def _validate_access_level(self, access_level: Optional[str]) -> str:
        access_level = (access_level or settings.default_access_level).strip()
        if self.resolver.required_hierarchy_level(access_level) is None:
            raise ValidationError(f"Unknown access level: {access_level!r}")
        return access_level

    def _transition(
        self,
        request_id: int,
        expected: RequestStatus,
        new: RequestStatus,
        extra_filter=None,
        **values
    ) -> bool:
        """
        Compare-and-set the request's status.

        Returns:
            True if this call moved the request, False if its status was no
            longer ``expected`` (or ``extra_filter`` did not match)
        """
        if new not in ALLOWED_TRANSITIONS[expected]:
            raise InvalidStateError(f"Transition {expected.value} -> {new.value} is not allowed")

        query = self.session.query(AccessRequest).filter(
            AccessRequest.id == request_id,
            AccessRequest.status == expected
        )
        if extra_filter is not None:
            query = query.filter(extra_filter)

        values.update(status=new, updated_at=utcnow())
        updated = query.update(values, synchronize_session='fetch')
        return updated == 1

    def _reload(self, request_id: int) -> AccessRequest:
        request = self.get_request(request_id)
        self.session.refresh(request)
        return request

    # ========================================================================
    # Request creation
    # ========================================================================

    def create_access_request(
        self,
        ctx: ActorContext,
        target_type: str,
        target_id: int,
        access_level: Optional[str] = None,
        reason: Optional[str] = None,
        duration_minutes: Optional[int] = None
    ) -> AccessRequest:
        """
        File a PENDING request on behalf of the acting user.

        Raises:
            ValidationError: unknown/inactive target, bad duration or access level
            ConflictError: the same user already has this request pending
        """
        requester = self._require_active_actor(ctx)
        tool = self._validate_target(target_type, target_id)
        access_level = self._validate_access_level(access_level)
        duration_minutes = validate_duration(duration_minutes)

        duplicate = self.session.query(AccessRequest.id).filter(
            AccessRequest.user_id == requester.id,
            AccessRequest.target_type == target_type,
            AccessRequest.target_id == target_id,
            AccessRequest.access_level == access_level,
            AccessRequest.status == RequestStatus.PENDING
        ).first()
        if duplicate is not None:
            raise ConflictError("You already have a pending request for this access")

        request = AccessRequest(
            user_id=requester.id,
            request_type=REQUEST_TYPE,
            target_type=target_type,
            target_id=target_id,
            access_level=access_level,
            reason=reason,
            duration_minutes=duration_minutes,
            status=RequestStatus.PENDING
        )
        self.session.add(request)
        self.session.flush()

        self.audit.record(
            ctx, 'request_created', AUDIT_CATEGORY,
            target_type='access_request', target_id=request.id, target_name=tool.name,
            details=reason,
            new_value={'tool_id': target_id, 'access_level': access_level,
                       'duration_minutes': duration_minutes, 'status': RequestStatus.PENDING.value}
        )
        logger.info(f"Access request {request.id} created by user {requester.id} for tool {tool.name} ({access_level})")
        return request

    # ========================================================================
    # Decisions
    # ========================================================================

    def approve_request(
        self,
        ctx: ActorContext,
        request_id: int,
        duration_minutes: Optional[int] = None
    ) -> AccessRequest:
        """
        Approve a PENDING request.

        An explicit ``duration_minutes`` overrides the request's own
        duration; with neither the grant is permanent.

        Raises:
            AuthorizationError: the actor may not approve this request
            InvalidStateError: the request is no longer PENDING
        """
        request = self.get_request(request_id)
        if not self.resolver.can_approve(ctx.actor_id, request):
            logger.warning(f"Approval of request {request_id} denied for user {ctx.actor_id}")
            raise AuthorizationError(f"user {ctx.actor_id} cannot approve request {request_id}")

        override = validate_duration(duration_minutes)
        effective = override if override is not None else request.duration_minutes
        approved_at = utcnow()

        moved = self._transition(
            request_id, RequestStatus.PENDING, RequestStatus.APPROVED,
            approver_id=ctx.actor_id,
            approved_by=ctx.actor_id,
            approved_at=approved_at,
            duration_minutes=effective,
            expires_at=compute_expiry(approved_at, effective)
        )
        request = self._reload(request_id)
        if not moved:
            raise InvalidStateError(f"Request is {request.status.value}, not PENDING")

        self.audit.record(
            ctx, 'request_approved', AUDIT_CATEGORY,
            target_type='access_request', target_id=request.id,
            old_value={'status': RequestStatus.PENDING.value},
            new_value={'status': RequestStatus.APPROVED.value, 'duration_minutes': effective,
                       'expires_at': request.expires_at}
        )
        logger.info(f"Access request {request_id} approved by user {ctx.actor_id}")
        return request

    def reject_request(self, ctx: ActorContext, request_id: int, reason: str) -> AccessRequest:
        """
        Reject a PENDING request. A non-empty reason is mandatory.
        """
        reason = validate_required(reason, "reason")
        request = self.get_request(request_id)
        if not self.resolver.can_approve(ctx.actor_id, request):
            logger.warning(f"Rejection of request {request_id} denied for user {ctx.actor_id}")
            raise AuthorizationError(f"user {ctx.actor_id} cannot reject request {request_id}")

        moved = self._transition(
            request_id, RequestStatus.PENDING, RequestStatus.REJECTED,
            approver_id=ctx.actor_id,
            rejected_by=ctx.actor_id,
            rejected_at=utcnow(),
            rejection_reason=reason
        )
        request = self._reload(request_id)
        if not moved:
            raise InvalidStateError(f"Request is {request.status.value}, not PENDING")

        self.audit.record(
            ctx, 'request_rejected', AUDIT_CATEGORY,
            target_type='access_request', target_id=request.id,
            details=reason,
            old_value={'status': RequestStatus.PENDING.value},
            new_value={'status': RequestStatus.REJECTED.value}
        )
        logger.info(f"Access request {request_id} rejected by user {ctx.actor_id}")
        return request

    # ========================================================================
    # Revocation & expiry
    # ========================================================================

    def _require_grant(self, ctx: ActorContext, action: str):
        if not self.resolver.can_grant(ctx.actor_id):
            logger.warning(f"{action} denied for user {ctx.actor_id}")
            raise AuthorizationError(f"user {ctx.actor_id} lacks can_grant_access")

    def revoke_access(self, ctx: ActorContext, user_id: int, target_type: str, target_id: int) -> int:
        """
        Revoke every APPROVED grant the user holds on the target.

        Revoking when nothing is active is a successful no-op, so the call is
        safe to retry.

        Returns:
            Number of requests moved to REVOKED
        """
        self._require_grant(ctx, "Revoke")

        active_ids = [
            row[0] for row in self.session.query(AccessRequest.id).filter(
                AccessRequest.user_id == user_id,
                AccessRequest.target_type == target_type,
                AccessRequest.target_id == target_id,
                AccessRequest.status == RequestStatus.APPROVED
            ).all()
        ]

        revoked = 0
        now = utcnow()
        for request_id in active_ids:
            if not self._transition(
                request_id, RequestStatus.APPROVED, RequestStatus.REVOKED,
                revoked_by=ctx.actor_id, revoked_at=now
            ):
                continue
            revoked += 1
            self.audit.record(
                ctx, 'access_revoked', AUDIT_CATEGORY,
                target_type='access_request', target_id=request_id,
                old_value={'status': RequestStatus.APPROVED.value},
                new_value={'status': RequestStatus.REVOKED.value, 'user_id': user_id,
                           'target_type': target_type, 'target_id': target_id}
            )

        if revoked:
            logger.info(f"Revoked {revoked} grant(s) of user {user_id} on {target_type}:{target_id}")
        return revoked

    def revoke_request(self, ctx: ActorContext, request_id: int) -> AccessRequest:
        """Revoke one specific APPROVED request."""
        self._require_grant(ctx, "Revoke")
        self.get_request(request_id)

        moved = self._transition(
            request_id, RequestStatus.APPROVED, RequestStatus.REVOKED,
            revoked_by=ctx.actor_id, revoked_at=utcnow()
        )
        request = self._reload(request_id)
        if not moved:
            raise InvalidStateError(f"Request is {request.status.value}, not APPROVED")

        self.audit.record(
            ctx, 'access_revoked', AUDIT_CATEGORY,
            target_type='access_request', target_id=request.id,
            old_value={'status': RequestStatus.APPROVED.value},
            new_value={'status': RequestStatus.REVOKED.value}
        )
        logger.info(f"Access request {request_id} revoked by user {ctx.actor_id}")
        return request

    def expire_due(self, now: Optional[datetime] = None) -> int:
        """
        Move every APPROVED request whose expiry has passed to EXPIRED.

        Each move re-checks status and expiry in its UPDATE, so concurrent
        or repeated sweeps never expire a request twice.

        Returns:
            Number of requests expired by this call
        """
        now = now or utcnow()
        due_ids = [
            row[0] for row in self.session.query(AccessRequest.id).filter(
                AccessRequest.status == RequestStatus.APPROVED,
                AccessRequest.expires_at.isnot(None),
                AccessRequest.expires_at <= now
            ).all()
        ]

        system = ActorContext.system()
        expired = 0
        for request_id in due_ids:
            if not self._transition(
                request_id, RequestStatus.APPROVED, RequestStatus.EXPIRED,
                extra_filter=AccessRequest.expires_at <= now
            ):
                continue
            expired += 1
            self.audit.record(
                system, 'access_expired', AUDIT_CATEGORY,
                target_type='access_request', target_id=request_id,
                old_value={'status': RequestStatus.APPROVED.value},
                new_value={'status': RequestStatus.EXPIRED.value}
            )

        if expired:
            logger.info(f"Expired {expired} access grant(s)")
        return expired

    # ========================================================================
    # Direct grants
    # ========================================================================

    def direct_grant(
        self,
        ctx: ActorContext,
        user_id: int,
        target_type: str,
        target_id: int,
        access_level: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None
    ) -> AccessRequest:
        """
        Grant access without a pending request.

        Creates a request already APPROVED and attributed to the granter.
        """
        self._require_grant(ctx, "Direct grant")

        grantee = self.session.get(User, user_id)
        if grantee is None or not grantee.is_active:
            raise ValidationError("Grantee does not exist or is inactive")
        tool = self._validate_target(target_type, target_id)
        access_level = self._validate_access_level(access_level)
        duration_minutes = validate_duration(duration_minutes)

        approved_at = utcnow()
        request = AccessRequest(
            user_id=user_id,
            request_type=REQUEST_TYPE,
            target_type=target_type,
            target_id=target_id,
            access_level=access_level,
            reason=reason,
            duration_minutes=duration_minutes,
            status=RequestStatus.APPROVED,
            approver_id=ctx.actor_id,
            approved_by=ctx.actor_id,
            approved_at=approved_at,
            expires_at=compute_expiry(approved_at, duration_minutes)
        )
        self.session.add(request)
        self.session.flush()

        self.audit.record(
            ctx, 'access_granted', AUDIT_CATEGORY,
            target_type='access_request', target_id=request.id, target_name=tool.name,
            new_value={'user_id': user_id, 'tool_id': target_id, 'access_level': access_level,
                       'duration_minutes': duration_minutes, 'status': RequestStatus.APPROVED.value}
        )
        logger.info(f"User {ctx.actor_id} granted {access_level} on {tool.name} to user {user_id}")
        return request

    def bulk_grant_access(
        self,
        ctx: ActorContext,
        user_ids: List[int],
        tool_ids: List[int],
        access_level: Optional[str] = None,
        duration_minutes: Optional[int] = None
    ) -> BulkResult:
        """
        Direct-grant every tool to every user.

        Each pair runs in its own savepoint: a pair that fails validation is
        counted as failed and the others still persist.
        """
        if not user_ids or not tool_ids:
            raise ValidationError("user_ids and tool_ids are required")
        self._require_grant(ctx, "Bulk grant")
        access_level = self._validate_access_level(access_level)

        result = BulkResult()
        for user_id in dict.fromkeys(user_ids):
            for tool_id in dict.fromkeys(tool_ids):
                try:
                    with self.session.begin_nested():
                        self.direct_grant(ctx, user_id, TARGET_TYPE_TOOL, tool_id, access_level, duration_minutes)
                    result.count += 1
                except AccessHubError as e:
                    logger.warning(f"Bulk grant skipped user {user_id} tool {tool_id}: {e.detail}")
                    result.failed += 1

        self.audit.record(
            ctx, 'bulk_access_granted', 'bulk',
            target_type='tool',
            new_value={'user_ids': list(user_ids), 'tool_ids': list(tool_ids),
                       'access_level': access_level, 'grants': result.count, 'failed': result.failed}
        )
        return result

    # ========================================================================
    # Queries
    # ========================================================================

    def my_requests(self, ctx: ActorContext) -> List[AccessRequest]:
        """The acting user's own requests, newest first."""
        return (
            self.session.query(AccessRequest)
            .filter(AccessRequest.user_id == ctx.actor_id)
            .order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc())
            .all()
        )

    def pending_for(self, ctx: ActorContext) -> List[AccessRequest]:
        """
        PENDING requests the acting user may decide, oldest first.

        Raises:
            AuthorizationError: the actor holds no approving role
        """
        if not self.resolver.can_approve_any(ctx.actor_id):
            raise AuthorizationError(f"user {ctx.actor_id} holds no approving role")

        pending = (
            self.session.query(AccessRequest)
            .filter(AccessRequest.status == RequestStatus.PENDING)
            .order_by(AccessRequest.created_at, AccessRequest.id)
            .all()
        )
        return [request for request in pending if self.resolver.can_approve(ctx.actor_id, request)]

    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        user_id: Optional[int] = None,
        target_type: Optional[str] = None,
        limit: int = LIST_LIMIT
    ) -> List[AccessRequest]:
        """Admin view of all requests, most recent first."""
        query = self.session.query(AccessRequest)
        if status is not None:
            query = query.filter(AccessRequest.status == status)
        if user_id is not None:
            query = query.filter(AccessRequest.user_id == user_id)
        if target_type:
            query = query.filter(AccessRequest.target_type == target_type)
        limit = limit if 0 < limit <= LIST_LIMIT else LIST_LIMIT
        return (
            query.order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc())
            .limit(limit)
            .all()
        )

    def active_grants(self, user_id: int) -> List[AccessRequest]:
        """APPROVED requests of a user (may include grants awaiting the next sweep)."""
        return (
            self.session.query(AccessRequest)
            .filter(AccessRequest.user_id == user_id, AccessRequest.status == RequestStatus.APPROVED)
            .order_by(AccessRequest.approved_at.desc())
            .all()
        )
