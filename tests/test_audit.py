"""Audit trail writes, queries and exports."""
import csv
import io
import json
from datetime import date, timedelta

import pytest

from core.audit import AuditFilter, AuditLogger, EXPORT_FIELDS
from core.context import ActorContext
from core.exceptions import ValidationError
from core.tools import TARGET_TYPE_TOOL
from core.workflow import AccessWorkflow
from models.entities import AuditLog, utcnow


@pytest.fixture
def audit(session, org):
    return AuditLogger(session)


def test_record_serializes_values(session, audit):
    ctx = ActorContext(None, "192.0.2.7", "x" * 300)
    entry = audit.record(ctx, "custom", "test", old_value={"b": 1, "a": 2}, new_value="plain")

    assert entry.id is not None
    assert entry.old_value == '{"a": 2, "b": 1}'
    assert entry.new_value == "plain"
    assert entry.actor_id is None
    assert entry.ip_address == "192.0.2.7"
    assert len(entry.user_agent) == 255


def test_audit_rolls_back_with_the_change(session, org):
    before = session.query(AuditLog).count()
    savepoint = session.begin_nested()
    AccessWorkflow(session).create_access_request(org.alice, TARGET_TYPE_TOOL, org.tools["github"])
    assert session.query(AuditLog).count() == before + 1
    savepoint.rollback()
    assert session.query(AuditLog).count() == before


class TestQuery:

    def test_filters(self, audit, org):
        assert audit.list(AuditFilter(action_category="tool"))["total"] == 8  # 5 created + 3 approvers
        assert audit.list(AuditFilter(action="approver"))["total"] == 3
        assert audit.list(AuditFilter(actor_id=org.admin.actor_id, target_type="group"))["total"] == 2

    def test_pagination(self, audit):
        page = audit.list(page=2, limit=5, sort_by="id", order="asc")
        assert page["page"] == 2
        assert page["limit"] == 5
        assert page["total_pages"] == (page["total"] + 4) // 5
        assert [log.id for log in page["data"]] == list(range(6, 11))

    def test_limit_out_of_range_uses_default(self, audit):
        assert audit.list(limit=500)["limit"] == 50
        assert audit.list(limit=0)["limit"] == 50
        assert audit.list(page=-3)["page"] == 1

    def test_unknown_sort_column_falls_back(self, audit):
        newest_first = audit.list(sort_by="password_hash")["data"]
        assert newest_first[0].id > newest_first[-1].id

    def test_date_range_is_inclusive(self, audit):
        today = utcnow().date()
        assert audit.list(AuditFilter(date_from=today, date_to=today))["total"] > 0
        assert audit.list(AuditFilter(date_to=today - timedelta(days=1)))["total"] == 0
        assert audit.list(AuditFilter(date_from=date(2999, 1, 1)))["total"] == 0

    def test_categories(self, audit):
        assert audit.categories() == ["group", "tool", "user"]


class TestExport:

    def test_json_export(self, audit, org):
        rows = json.loads(audit.export(AuditFilter(action="user_created")))
        assert len(rows) == 5
        assert set(rows[0]) == set(EXPORT_FIELDS)
        assert {row["actor_email"] for row in rows} == {"System"}

    def test_csv_export_names_actors(self, audit):
        reader = csv.DictReader(io.StringIO(audit.export(AuditFilter(action="tool_created"), format="csv")))
        rows = list(reader)
        assert reader.fieldnames == EXPORT_FIELDS
        assert len(rows) == 5
        assert {row["actor_email"] for row in rows} == {"admin@acme.io"}

    def test_unsupported_format(self, audit):
        with pytest.raises(ValidationError):
            audit.export(format="xml")
