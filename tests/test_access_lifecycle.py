"""Access-request state machine: create, approve, reject, grant, revoke, expiry."""

import json
from datetime import datetime, timedelta

import pytest

from gatekeepr.core.config import settings
from gatekeepr.core.exceptions import (
    AuthorizationError, ResourceConflictError, ResourceNotFoundError, ValidationError,
)
from gatekeepr.models.access_request import AccessRequest, AccessStatus
from gatekeepr.models.audit_log import AuditLog
from gatekeepr.models.tool import Tool
from gatekeepr.schemas.schemas import (
    AccessRequestCreate, ApproveRequest, DirectGrantRequest, RejectRequest, RevokeRequest, TargetRef,
)
from gatekeepr.services.access_service import access_service, resolve_target_name

from tests.conftest import auth_headers


def _request(db, user, target_id=7, target_type="tool", **kwargs):
    body = AccessRequestCreate(target_type=target_type, target_id=target_id, **kwargs)
    return access_service.create_request(db, user.id, body).id


def _status(db, request_id):
    db.expire_all()
    return db.get(AccessRequest, request_id).status


class TestCreate:

    def test_creates_pending_request(self, db_session, member):
        request_id = _request(db_session, member, reason="need it")
        row = db_session.get(AccessRequest, request_id)
        assert row.status == AccessStatus.PENDING
        assert row.access_level == "read"
        assert row.request_type == "tool_access"

    def test_missing_target_is_rejected(self, db_session, member):
        with pytest.raises(ValidationError):
            access_service.create_request(db_session, member.id, AccessRequestCreate(target_type="tool"))
        with pytest.raises(ValidationError):
            access_service.create_request(db_session, member.id, AccessRequestCreate(target_id=3))

    def test_second_pending_request_conflicts(self, db_session, member):
        _request(db_session, member)
        with pytest.raises(ResourceConflictError, match="pending request"):
            _request(db_session, member)

    def test_other_target_or_user_does_not_conflict(self, db_session, member, manager):
        _request(db_session, member, target_id=7)
        _request(db_session, member, target_id=8)
        _request(db_session, member, target_id=7, target_type="group")
        _request(db_session, manager, target_id=7)

    def test_new_request_allowed_after_rejection(self, db_session, member, manager):
        first = _request(db_session, member)
        access_service.reject(db_session, manager.id, first, RejectRequest(reason="no"))
        assert _request(db_session, member) != first

    def test_new_request_allowed_after_revocation(self, db_session, member, admin):
        first = _request(db_session, member)
        access_service.approve(db_session, admin.id, first, ApproveRequest())
        access_service.revoke(
            db_session, admin.id, RevokeRequest(user_id=member.id, target_type="tool", target_id=7)
        )
        assert _request(db_session, member) != first

    def test_api_returns_201(self, client, member):
        resp = client.post(
            "/api/access/request",
            json={"target_type": "tool", "target_id": 1, "reason": "work"},
            headers=auth_headers(member),
        )
        assert resp.status_code == 201
        assert resp.json()["message"] == "Access request created successfully"

        dup = client.post(
            "/api/access/request",
            json={"target_type": "tool", "target_id": 1},
            headers=auth_headers(member),
        )
        assert dup.status_code == 409
        assert dup.json()["detail"] == "You already have a pending request for this resource"


class TestApproveReject:

    def test_approve_once(self, db_session, member, manager):
        request_id = _request(db_session, member)
        result = access_service.approve(db_session, manager.id, request_id, ApproveRequest())
        assert result.affected == 1

        row = db_session.get(AccessRequest, request_id)
        assert row.status == AccessStatus.APPROVED
        assert row.approved_by == manager.id
        assert row.approved_at is not None
        assert row.expires_at is None

    def test_second_transition_touches_nothing(self, db_session, member, manager, admin):
        request_id = _request(db_session, member)
        access_service.approve(db_session, manager.id, request_id, ApproveRequest())

        again = access_service.approve(db_session, admin.id, request_id, ApproveRequest(duration_minutes=5))
        late_reject = access_service.reject(db_session, admin.id, request_id, RejectRequest(reason="late"))

        assert again.affected == 0
        assert late_reject.affected == 0
        row = db_session.get(AccessRequest, request_id)
        assert row.status == AccessStatus.APPROVED
        assert row.approved_by == manager.id
        assert row.expires_at is None

    def test_strict_mode_raises_conflict(self, db_session, member, manager, monkeypatch):
        monkeypatch.setattr(settings, "STRICT_TRANSITIONS", True)
        request_id = _request(db_session, member)
        access_service.approve(db_session, manager.id, request_id, ApproveRequest())

        with pytest.raises(ResourceConflictError):
            access_service.approve(db_session, manager.id, request_id, ApproveRequest())
        with pytest.raises(ResourceNotFoundError):
            access_service.reject(db_session, manager.id, 9999, RejectRequest(reason="x"))

    def test_reject_records_reason(self, db_session, member, manager):
        request_id = _request(db_session, member)
        access_service.reject(db_session, manager.id, request_id, RejectRequest(reason="not needed"))

        row = db_session.get(AccessRequest, request_id)
        assert row.status == AccessStatus.REJECTED
        assert row.rejected_by == manager.id
        assert row.rejection_reason == "not needed"

    def test_reject_requires_reason(self, db_session, member, manager):
        request_id = _request(db_session, member)
        with pytest.raises(ValidationError):
            access_service.reject(db_session, manager.id, request_id, RejectRequest(reason="  "))
        assert _status(db_session, request_id) == AccessStatus.PENDING

    def test_requires_approver_capability(self, db_session, member):
        request_id = _request(db_session, member)
        with pytest.raises(AuthorizationError):
            access_service.approve(db_session, member.id, request_id, ApproveRequest())
        with pytest.raises(AuthorizationError):
            access_service.reject(db_session, member.id, request_id, RejectRequest(reason="x"))
        assert _status(db_session, request_id) == AccessStatus.PENDING

    def test_api_approve_without_body(self, client, db_session, member, manager):
        request_id = _request(db_session, member)
        resp = client.post(f"/api/access/requests/{request_id}/approve", headers=auth_headers(manager))
        assert resp.status_code == 200
        assert resp.json()["affected"] == 1

    def test_api_forbidden_for_plain_user(self, client, db_session, member):
        request_id = _request(db_session, member)
        resp = client.post(
            f"/api/access/requests/{request_id}/approve", json={}, headers=auth_headers(member)
        )
        assert resp.status_code == 403
        assert resp.json()["detail"] == "You do not have permission to approve requests"


class TestExpiry:
    T = datetime(2026, 3, 1, 9, 0, 0)

    def test_validity_window(self, db_session, member, manager):
        request_id = _request(db_session, member)
        access_service.approve(
            db_session, manager.id, request_id, ApproveRequest(duration_minutes=60), now=self.T
        )
        row = db_session.get(AccessRequest, request_id)

        assert row.expires_at == self.T + timedelta(minutes=60)
        assert row.is_valid_at(self.T + timedelta(minutes=30))
        assert not row.is_valid_at(self.T + timedelta(minutes=90))
        # Expiry never changes the stored status
        assert row.status == AccessStatus.APPROVED

    def test_non_positive_duration_means_no_expiry(self, db_session, member, manager):
        request_id = _request(db_session, member)
        access_service.approve(db_session, manager.id, request_id, ApproveRequest(duration_minutes=0))
        assert db_session.get(AccessRequest, request_id).expires_at is None

    def test_has_valid_access(self, db_session, member, admin):
        ref = TargetRef(target_type="tool", target_id=4)
        access_service.direct_grant(
            db_session, admin.id,
            DirectGrantRequest(user_id=member.id, target_type="tool", target_id=4, duration_minutes=60),
            now=self.T,
        )
        assert access_service.has_valid_access(db_session, member.id, ref, now=self.T + timedelta(minutes=30))
        assert not access_service.has_valid_access(db_session, member.id, ref, now=self.T + timedelta(minutes=90))

    def test_expired_report_leaves_rows_untouched(self, db_session, member, admin):
        access_service.direct_grant(
            db_session, admin.id,
            DirectGrantRequest(user_id=member.id, target_type="tool", target_id=4, duration_minutes=60),
            now=self.T,
        )
        expired = access_service.expired_grants(db_session, now=self.T + timedelta(hours=2))
        assert [g.user_email for g in expired] == [member.email]
        assert expired[0].status == AccessStatus.APPROVED

        assert access_service.expired_grants(db_session, now=self.T + timedelta(minutes=10)) == []

    def test_active_grants_filter_expired(self, db_session, member, admin):
        for target_id, duration in ((1, 60), (2, None)):
            access_service.direct_grant(
                db_session, admin.id,
                DirectGrantRequest(user_id=member.id, target_type="tool", target_id=target_id,
                                   duration_minutes=duration),
                now=self.T,
            )
        active = access_service.active_grants(db_session, member.id, now=self.T + timedelta(hours=3))
        assert [g.target_id for g in active] == [2]


class TestDirectGrantAndRevoke:

    def test_direct_grant_is_born_approved(self, db_session, member, admin):
        result = access_service.direct_grant(
            db_session, admin.id, DirectGrantRequest(user_id=member.id, target_type="tool", target_id=3)
        )
        row = db_session.get(AccessRequest, result.id)
        assert row.status == AccessStatus.APPROVED
        assert row.approved_by == admin.id
        assert row.user_id == member.id

    def test_direct_grant_requires_grant_capability(self, db_session, member, manager):
        with pytest.raises(AuthorizationError):
            access_service.direct_grant(
                db_session, manager.id, DirectGrantRequest(user_id=member.id, target_type="tool", target_id=3)
            )

    def test_direct_grant_requires_fields(self, db_session, admin):
        with pytest.raises(ValidationError):
            access_service.direct_grant(db_session, admin.id, DirectGrantRequest(target_type="tool", target_id=3))

    def test_revoke_all_approved_rows(self, db_session, member, admin):
        body = DirectGrantRequest(user_id=member.id, target_type="tool", target_id=3)
        ids = [access_service.direct_grant(db_session, admin.id, body).id for _ in range(2)]
        pending = _request(db_session, member, target_id=3)

        result = access_service.revoke(
            db_session, admin.id, RevokeRequest(user_id=member.id, target_type="tool", target_id=3)
        )

        assert result.affected == 2
        assert [_status(db_session, i) for i in ids] == [AccessStatus.REVOKED] * 2
        assert _status(db_session, pending) == AccessStatus.PENDING

    def test_revoke_without_grants_is_noop(self, db_session, member, admin):
        result = access_service.revoke(
            db_session, admin.id, RevokeRequest(user_id=member.id, target_type="tool", target_id=99)
        )
        assert result.affected == 0
        assert result.message == "Access revoked successfully"

    def test_revoke_requires_grant_capability(self, client, member, manager):
        resp = client.post(
            "/api/access/revoke",
            json={"user_id": member.id, "target_type": "tool", "target_id": 1},
            headers=auth_headers(manager),
        )
        assert resp.status_code == 403


class TestListing:

    def test_pending_oldest_first_for_approvers(self, client, db_session, member, manager):
        first = _request(db_session, member, target_id=1)
        second = _request(db_session, member, target_id=2)

        resp = client.get("/api/access/requests/pending", headers=auth_headers(manager))
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == [first, second]
        assert resp.json()[0]["user_email"] == member.email

        denied = client.get("/api/access/requests/pending", headers=auth_headers(member))
        assert denied.status_code == 403

    def test_list_filters_and_newest_first(self, client, db_session, member, manager):
        first = _request(db_session, member, target_id=1)
        second = _request(db_session, member, target_id=2)
        access_service.approve(db_session, manager.id, first, ApproveRequest())

        resp = client.get("/api/access/requests", headers=auth_headers(manager))
        assert [r["id"] for r in resp.json()] == [second, first]

        approved = client.get("/api/access/requests?status=APPROVED", headers=auth_headers(manager))
        assert [r["id"] for r in approved.json()] == [first]

        bad = client.get("/api/access/requests?status=LOST", headers=auth_headers(manager))
        assert bad.status_code == 400

    def test_my_requests_only_own(self, client, db_session, member, manager):
        mine = _request(db_session, member)
        _request(db_session, manager)
        resp = client.get("/api/access/my-requests", headers=auth_headers(member))
        assert [r["id"] for r in resp.json()] == [mine]

    def test_target_name_resolution(self, db_session, member):
        tool = Tool(name="grafana", display_name="Grafana")
        db_session.add(tool)
        db_session.commit()

        assert resolve_target_name(db_session, TargetRef(target_type="tool", target_id=tool.id)) == "Grafana"
        assert resolve_target_name(db_session, TargetRef(target_type="vpn", target_id=tool.id)) is None

        _request(db_session, member, target_id=tool.id)
        assert access_service.my_requests(db_session, member.id)[0].target_name == "Grafana"

    def test_expired_report_requires_manager_level(self, client, member, manager):
        assert client.get("/api/access/expired", headers=auth_headers(member)).status_code == 403
        assert client.get("/api/access/expired", headers=auth_headers(manager)).status_code == 200


def test_each_transition_writes_one_audit_row(db_session, member, admin):
    request_id = _request(db_session, member)
    access_service.approve(db_session, admin.id, request_id, ApproveRequest())
    access_service.direct_grant(
        db_session, admin.id, DirectGrantRequest(user_id=member.id, target_type="tool", target_id=2)
    )
    access_service.revoke(db_session, admin.id, RevokeRequest(user_id=member.id, target_type="tool", target_id=2))

    actions = [a for (a,) in db_session.query(AuditLog.action).order_by(AuditLog.id)]
    assert actions == [
        "access.request.create", "access.request.approve", "access.grant.direct", "access.revoke",
    ]
    categories = {c for (c,) in db_session.query(AuditLog.action_category)}
    assert categories == {"access"}


class TestCheckAccess:

    def test_own_access(self, client, db_session, member, admin):
        access_service.direct_grant(
            db_session, admin.id, DirectGrantRequest(user_id=member.id, target_type="tool", target_id=8)
        )
        resp = client.get("/api/access/check?target_type=tool&target_id=8", headers=auth_headers(member))
        assert resp.json() == {"user_id": member.id, "target_type": "tool", "target_id": 8, "valid": True}

        other = client.get("/api/access/check?target_type=tool&target_id=9", headers=auth_headers(member))
        assert other.json()["valid"] is False

    def test_other_users_need_manager_level(self, client, member, manager, outsider):
        url = f"/api/access/check?target_type=tool&target_id=8&user_id={outsider.id}"
        assert client.get(url, headers=auth_headers(member)).status_code == 403

        resp = client.get(url, headers=auth_headers(manager))
        assert resp.status_code == 200
        assert resp.json()["user_id"] == outsider.id


def test_noop_transition_is_distinguishable_in_audit(db_session, member, manager):
    request_id = _request(db_session, member)
    access_service.approve(db_session, manager.id, request_id, ApproveRequest())
    access_service.approve(db_session, manager.id, request_id, ApproveRequest())
    access_service.reject(db_session, manager.id, request_id, RejectRequest(reason="late"))

    entries = (
        db_session.query(AuditLog)
        .filter(AuditLog.action.in_(["access.request.approve", "access.request.reject"]))
        .order_by(AuditLog.id)
        .all()
    )
    payloads = [json.loads(e.new_value) for e in entries]
    assert [p["affected"] for p in payloads] == [1, 0, 0]
    assert payloads[2]["reason"] == "late"
