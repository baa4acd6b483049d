"""
Audit Logging Module
====================

Append-only audit trail for every state-changing operation in AccessHub.

Features:
- Write-ahead with the mutation: rows are added to the caller's session so
  the change and its audit record commit (or roll back) together
- Filtered, paginated queries for the admin console
- JSON/CSV export for SIEM integration
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Dict, Any

from sqlalchemy import asc, desc
from sqlalchemy.orm import Session

from models.entities import AuditLog, User
from .context import ActorContext
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
EXPORT_LIMIT = 10000

SORTABLE_COLUMNS = {
    'created_at': AuditLog.created_at,
    'action': AuditLog.action,
    'action_category': AuditLog.action_category,
    'actor_id': AuditLog.actor_id,
    'target_type': AuditLog.target_type,
    'id': AuditLog.id,
}

EXPORT_FIELDS = [
    'id', 'created_at', 'actor_id', 'actor_email', 'action', 'action_category',
    'target_type', 'target_id', 'target_name', 'details', 'old_value', 'new_value',
    'ip_address', 'user_agent',
]


@dataclass
class AuditFilter:
    """Filter criteria for audit queries. Dates are inclusive calendar days."""
    actor_id: Optional[int] = None
    action: Optional[str] = None
    action_category: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


def _to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, sort_keys=True)


class AuditLogger:
    """
    Audit logging service.

    Provides:
    - Log creation for all state changes
    - Query capabilities for investigations
    - Export for external SIEM systems
    """

    def __init__(self, session: Session):
        """
        Initialize audit logger with database session.

        Args:
            session: SQLAlchemy session shared with the mutating service
        """
        self.session = session

    def record(
        self,
        ctx: ActorContext,
        action: str,
        action_category: str,
        target_type: Optional[str] = None,
        target_id: Optional[int] = None,
        target_name: Optional[str] = None,
        details: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None
    ) -> AuditLog:
        """
        Record one state-changing action.

        The row is flushed but not committed; any database error propagates
        to the caller, whose transaction is then rolled back with the change.

        Args:
            ctx: Actor performing the action (actor_id None = system)
            action: Action name, e.g. 'request_approved'
            action_category: Grouping tag, e.g. 'access_request'
            target_type: Kind of entity affected
            target_id: Id of the entity affected
            target_name: Human-readable name (denormalized)
            details: Free-text detail
            old_value: Previous state, serialized to JSON
            new_value: New state, serialized to JSON

        Returns:
            Created AuditLog entry
        """
        log_entry = AuditLog(
            actor_id=ctx.actor_id,
            action=action,
            action_category=action_category,
            target_type=target_type,
            target_id=target_id,
            target_name=target_name,
            details=details,
            old_value=_to_json(old_value),
            new_value=_to_json(new_value),
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent[:255] if ctx.user_agent else None
        )

        self.session.add(log_entry)
        self.session.flush()
        logger.debug(f"audit {action} actor={ctx.actor_id} target={target_type}:{target_id}")
        return log_entry

    def _filtered_query(self, criteria: Optional[AuditFilter]):
        query = self.session.query(AuditLog)
        if criteria is None:
            return query

        if criteria.actor_id is not None:
            query = query.filter(AuditLog.actor_id == criteria.actor_id)
        if criteria.action:
            query = query.filter(AuditLog.action.contains(criteria.action))
        if criteria.action_category:
            query = query.filter(AuditLog.action_category == criteria.action_category)
        if criteria.target_type:
            query = query.filter(AuditLog.target_type == criteria.target_type)
        if criteria.target_id is not None:
            query = query.filter(AuditLog.target_id == criteria.target_id)
        if criteria.date_from is not None:
            query = query.filter(AuditLog.created_at >= datetime.combine(criteria.date_from, time.min))
        if criteria.date_to is not None:
            next_day = datetime.combine(criteria.date_to, time.min) + timedelta(days=1)
            query = query.filter(AuditLog.created_at < next_day)
        return query

    def list(
        self,
        criteria: Optional[AuditFilter] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sort_by: str = 'created_at',
        order: str = 'desc'
    ) -> Dict[str, Any]:
        """
        Query audit logs with filters and pagination.

        Args:
            criteria: Filter criteria
            page: 1-based page number (values below 1 are treated as 1)
            limit: Page size, 1..100; out-of-range values use the default 50
            sort_by: Column to sort on; unknown columns fall back to created_at
            order: 'asc' or 'desc'

        Returns:
            Dictionary with data, total, page, limit and total_pages
        """
        page = max(page, 1)
        if limit < 1 or limit > MAX_PAGE_SIZE:
            limit = DEFAULT_PAGE_SIZE

        query = self._filtered_query(criteria)
        total = query.count()

        column = SORTABLE_COLUMNS.get(sort_by, AuditLog.created_at)
        direction = asc if order == 'asc' else desc
        logs = (
            query.order_by(direction(column), direction(AuditLog.id))
            .limit(limit)
            .offset((page - 1) * limit)
            .all()
        )

        return {
            'data': logs,
            'total': total,
            'page': page,
            'limit': limit,
            'total_pages': (total + limit - 1) // limit
        }

    def categories(self) -> List[str]:
        """Distinct action categories present in the log."""
        rows = (
            self.session.query(AuditLog.action_category)
            .distinct()
            .order_by(AuditLog.action_category)
            .all()
        )
        return [row[0] for row in rows if row[0]]

    def export_rows(self, criteria: Optional[AuditFilter] = None) -> List[Dict[str, Any]]:
        """Filtered log rows as plain dictionaries, newest first."""
        logs = (
            self._filtered_query(criteria)
            .order_by(desc(AuditLog.created_at), desc(AuditLog.id))
            .limit(EXPORT_LIMIT)
            .all()
        )

        actor_ids = {log.actor_id for log in logs if log.actor_id}
        emails = {}
        if actor_ids:
            emails = dict(
                self.session.query(User.id, User.email).filter(User.id.in_(actor_ids)).all()
            )

        return [
            {
                'id': log.id,
                'created_at': log.created_at.isoformat() if log.created_at else None,
                'actor_id': log.actor_id,
                'actor_email': emails.get(log.actor_id, 'System'),
                'action': log.action,
                'action_category': log.action_category,
                'target_type': log.target_type,
                'target_id': log.target_id,
                'target_name': log.target_name,
                'details': log.details,
                'old_value': log.old_value,
                'new_value': log.new_value,
                'ip_address': log.ip_address,
                'user_agent': log.user_agent
            }
            for log in logs
        ]

    def export(self, criteria: Optional[AuditFilter] = None, format: str = 'json') -> str:
        """
        Export audit logs for external SIEM integration.

        Args:
            criteria: Filter criteria
            format: Output format ('json' or 'csv')

        Returns:
            Formatted log data as string
        """
        rows = self.export_rows(criteria)

        if format == 'json':
            return json.dumps(rows, indent=2)

        elif format == 'csv':
            buffer = io.StringIO()
            writer = csv.DictWriter(buffer, fieldnames=EXPORT_FIELDS)
            writer.writeheader()
            writer.writerows(rows)
            return buffer.getvalue()

        else:
            raise ValidationError(f"Unsupported format: {format}")
