"""Audit trail: entry shape, failure isolation, querying and export."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from gatekeepr.core.security import RequestContext
from gatekeepr.models.audit_log import AuditLog
from gatekeepr.schemas.schemas import AuditLogFilter, ToolCreate
from gatekeepr.services.audit_service import AuditService, action_category, audit_service
from gatekeepr.services.catalog_service import tool_service

from tests.conftest import auth_headers


def _audit_rows(db):
    db.expire_all()
    return db.query(AuditLog).order_by(AuditLog.id).all()


class TestActionCategory:

    @pytest.mark.parametrize("action,target_type,expected", [
        ("role.create", "role", "role"),
        ("access.request.approve", "access_request", "access"),
        ("bulk.roles.assign", "user_role", "bulk"),
        ("login", "user", "user"),
        ("login", None, None),
    ])
    def test_prefix_or_target_type(self, action, target_type, expected):
        assert action_category(action, target_type) == expected


class TestRecord:

    def test_one_entry_per_mutation(self, client, db_session, admin):
        resp = client.post(
            "/api/tools/",
            json={"name": "jenkins", "display_name": "Jenkins", "category": "ci"},
            headers={**auth_headers(admin), "User-Agent": "pytest-agent"},
        )
        assert resp.status_code == 201

        rows = _audit_rows(db_session)
        assert len(rows) == 1
        entry = rows[0]
        assert entry.action == "tool.create"
        assert entry.action_category == "tool"
        assert entry.actor_id == admin.id
        assert entry.target_type == "tool"
        assert entry.target_id == resp.json()["id"]
        assert entry.user_agent == "pytest-agent"
        assert '"jenkins"' in entry.new_value
        assert entry.created_at is not None

    def test_reads_write_nothing(self, client, db_session, admin):
        client.get("/api/tools/", headers=auth_headers(admin))
        client.get("/api/roles/", headers=auth_headers(admin))
        assert _audit_rows(db_session) == []

    def test_context_is_stored(self, db_session, admin):
        audit_service.record(
            db_session, admin.id, "custom.event", "tool", target_id=3,
            context=RequestContext(ip_address="10.0.0.1", user_agent="cli"),
            details="manual",
        )
        entry = _audit_rows(db_session)[0]
        assert (entry.ip_address, entry.user_agent, entry.details) == ("10.0.0.1", "cli", "manual")

    def test_failed_write_does_not_fail_mutation(self, db_session, admin):
        failure = OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))
        with patch.object(AuditService, "_write", side_effect=failure), \
                patch("gatekeepr.services.audit_service.retry_audit_write") as retry_task:
            result = tool_service.create_tool(
                db_session, admin.id, ToolCreate(name="vault", display_name="Vault")
            )

        assert result.id is not None
        assert tool_service.get_tool(db_session, result.id).name == "vault"
        assert _audit_rows(db_session) == []

        retry_task.apply_async.assert_called_once()
        payload = retry_task.apply_async.call_args.kwargs["args"][0]
        assert payload["action"] == "tool.create"
        assert isinstance(payload["created_at"], str)

    def test_unreachable_broker_is_swallowed(self, db_session, admin):
        failure = OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))
        with patch.object(AuditService, "_write", side_effect=failure), \
                patch("gatekeepr.services.audit_service.retry_audit_write") as retry_task:
            retry_task.apply_async.side_effect = ConnectionError("broker down")
            assert audit_service.record(db_session, admin.id, "tool.delete", "tool", target_id=1) is None


class TestQuery:

    @pytest.fixture
    def populated(self, db_session, admin, manager):
        for i in range(7):
            audit_service.record(db_session, admin.id, "role.update", "role", target_id=i)
        for i in range(3):
            audit_service.record(db_session, manager.id, "access.request.approve", "access_request", target_id=i)
        audit_service.record(db_session, None, "system.cleanup", None)
        return db_session

    def test_pagination(self, populated):
        page = audit_service.query_logs(populated, AuditLogFilter(page=2, limit=4))
        assert page["total"] == 11
        assert page["total_pages"] == 3
        assert page["page"] == 2
        assert len(page["data"]) == 4

    @pytest.mark.parametrize("limit", [0, -1, 101, 5000])
    def test_out_of_range_limit_falls_back(self, populated, limit):
        page = audit_service.query_logs(populated, AuditLogFilter(limit=limit))
        assert page["limit"] == 50
        assert len(page["data"]) == 11

    def test_filters(self, populated, manager):
        by_actor = audit_service.query_logs(populated, AuditLogFilter(actor_id=manager.id))
        assert by_actor["total"] == 3
        assert {e.actor_email for e in by_actor["data"]} == {manager.email}

        by_category = audit_service.query_logs(populated, AuditLogFilter(action_category="role"))
        assert by_category["total"] == 7

        by_action = audit_service.query_logs(populated, AuditLogFilter(action="approve"))
        assert by_action["total"] == 3

    def test_sorting_whitelist(self, populated):
        asc = audit_service.query_logs(populated, AuditLogFilter(sort_by="id", order="asc"))
        ids = [e.id for e in asc["data"]]
        assert ids == sorted(ids)

        # Unknown columns fall back to created_at
        unknown = audit_service.query_logs(populated, AuditLogFilter(sort_by="password"))
        assert unknown["total"] == 11

    def test_system_actor(self, populated):
        page = audit_service.query_logs(populated, AuditLogFilter(action="system"))
        assert page["data"][0].actor_id is None
        assert page["data"][0].actor_email == "System"

    def test_categories(self, populated):
        assert audit_service.categories(populated) == ["access", "role", "system"]


class TestAuditApi:

    def test_logs_require_audit_read(self, client, member, manager):
        assert client.get("/api/audit/logs", headers=auth_headers(member)).status_code == 403

        resp = client.get("/api/audit/logs?limit=10", headers=auth_headers(manager))
        assert resp.status_code == 200
        assert resp.json()["limit"] == 10

    def test_export_requires_export_permission(self, client, admin, super_admin):
        assert client.get("/api/audit/export", headers=auth_headers(admin)).status_code == 403

        resp = client.get("/api/audit/export", headers=auth_headers(super_admin))
        assert resp.status_code == 200
        assert "attachment" in resp.headers["content-disposition"]

    def test_export_omits_values(self, client, db_session, super_admin):
        audit_service.record(
            db_session, super_admin.id, "role.update", "role", target_id=1,
            old_value={"hierarchy_level": 10}, new_value={"hierarchy_level": 20},
        )
        resp = client.get("/api/audit/export", headers=auth_headers(super_admin))
        exported = resp.json()
        assert len(exported) == 1
        assert exported[0]["action"] == "role.update"
        assert exported[0]["old_value"] is None
        assert exported[0]["new_value"] is None
