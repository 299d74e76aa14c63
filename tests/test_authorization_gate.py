"""Credential extraction and the role / permission / hierarchy guards."""

from datetime import timedelta

import pytest

from gatekeepr.core.exceptions import AuthenticationError
from gatekeepr.core.security import create_access_token, verify_token
from gatekeepr.models.audit_log import AuditLog
from gatekeepr.models.role import UserRole

from tests.conftest import auth_headers, make_user, role_id


class TestCredentials:

    def test_missing_credential(self, client):
        resp = client.get("/me")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Authorization required"

    @pytest.mark.parametrize("header", ["Token abc", "Bearer", "Bearer a b", "bearer abc"])
    def test_malformed_header(self, client, header):
        resp = client.get("/me", headers={"Authorization": header})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid authorization header format"

    def test_bad_signature(self, client):
        resp = client.get("/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid or expired token"

    def test_expired_token(self, member):
        token = create_access_token(member.id, member.email, ["user"], expires_delta=timedelta(seconds=-5))
        with pytest.raises(AuthenticationError):
            verify_token(token)

    def test_claims_round_trip(self, member):
        identity = verify_token(create_access_token(member.id, member.email, ["user"]))
        assert identity.user_id == member.id
        assert identity.email == member.email
        assert identity.roles == ["user"]
        assert identity.expires_at is not None

    def test_cookie_wins_over_header(self, client, member, super_admin):
        client.cookies.set("auth_token", create_access_token(member.id, member.email, []))
        resp = client.get("/me", headers=auth_headers(super_admin))
        assert resp.json()["user"]["email"] == member.email


class TestGuards:

    def test_roles_claim_is_not_trusted(self, client, member):
        # The token says super_admin; the database says otherwise.
        token = create_access_token(member.id, member.email, ["super_admin"])
        resp = client.post(
            "/api/permissions/",
            json={"name": "x.y", "display_name": "X", "category": "x"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Insufficient permissions"

    def test_permission_guard(self, client, member, admin):
        body = {"name": "vault", "display_name": "Vault"}
        assert client.post("/api/tools/", json=body, headers=auth_headers(member)).status_code == 403
        assert client.post("/api/tools/", json=body, headers=auth_headers(admin)).status_code == 201

    def test_role_guard(self, client, db_session, manager, admin):
        body = {"user_ids": [manager.id], "role_ids": [role_id(db_session, "user")]}
        denied = client.post("/api/bulk/users/roles", json=body, headers=auth_headers(manager))
        assert denied.status_code == 403
        assert client.post("/api/bulk/users/roles", json=body, headers=auth_headers(admin)).status_code == 200

    def test_hierarchy_guard(self, client, member, manager):
        resp = client.get("/api/access/expired", headers=auth_headers(member))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Insufficient hierarchy level"
        assert client.get("/api/access/expired", headers=auth_headers(manager)).status_code == 200

    def test_user_without_roles(self, client, outsider):
        assert client.get("/api/audit/logs", headers=auth_headers(outsider)).status_code == 403
        assert client.get("/api/access/expired", headers=auth_headers(outsider)).status_code == 403
        # Authentication alone is enough for plain reads
        assert client.get("/api/tools/", headers=auth_headers(outsider)).status_code == 200

    def test_grants_are_read_live(self, client, db_session):
        user = make_user(db_session, "late@example.com")
        headers = auth_headers(user)
        assert client.get("/api/audit/logs", headers=headers).status_code == 403

        db_session.add(UserRole(user_id=user.id, role_id=role_id(db_session, "manager")))
        db_session.commit()

        assert client.get("/api/audit/logs", headers=headers).status_code == 200

    def test_denied_request_writes_no_audit(self, client, db_session, member):
        resp = client.post(
            "/api/roles/",
            json={"name": "auditor", "display_name": "Auditor"},
            headers=auth_headers(member),
        )
        assert resp.status_code == 403
        assert db_session.query(AuditLog).count() == 0
