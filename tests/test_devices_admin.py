"""
ResumeCustomizer Pro - Device Session and Admin Tests

Tests for:
- Listing and revoking the current user's devices
- Logout from all other devices
- Admin session control, approvals and login history
- Suspicious login reporting

Run with: pytest tests/test_devices_admin.py -v
"""

from datetime import timedelta
from unittest.mock import patch

from resumepro.auth.models import ApprovalStatus, DeviceSession, WebSession, utcnow
from resumepro.auth.sessions import cleanup_expired_sessions
from resumepro.auth.web_sessions import purge_expired_web_sessions
from tests.conftest import (
    ADMIN_PASSWORD,
    USER_PASSWORD,
    auth_headers,
    login_user,
    reload_user,
)

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def _login_admin(client):
    return login_user(client, "admin@test.com", ADMIN_PASSWORD)


# =============================================================================
# DEVICE TESTS
# =============================================================================

class TestDevices:
    """GET/DELETE /api/auth/devices and POST /api/auth/logout-all."""

    def test_list_devices_flags_current(self, client, test_user):
        login_user(client, "user@test.com", USER_PASSWORD, user_agent=CHROME_WINDOWS)
        current = login_user(client, "user@test.com", USER_PASSWORD, user_agent=SAFARI_IPHONE)

        response = client.get("/api/auth/devices", headers=auth_headers(current["accessToken"]))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        flagged = [s for s in data["sessions"] if s["isCurrent"]]
        assert len(flagged) == 1
        assert flagged[0]["browser"] == "Safari"
        assert flagged[0]["deviceType"] == "mobile"

    def test_revoke_other_device(self, client, test_user):
        old = login_user(client, "user@test.com", USER_PASSWORD, user_agent=CHROME_WINDOWS)
        current = login_user(client, "user@test.com", USER_PASSWORD, user_agent=SAFARI_IPHONE)
        headers = auth_headers(current["accessToken"])

        sessions = client.get("/api/auth/devices", headers=headers).json()["sessions"]
        other = next(s for s in sessions if not s["isCurrent"])

        response = client.delete(f"/api/auth/devices/{other['id']}", headers=headers)

        assert response.status_code == 200
        assert client.get("/api/auth/devices", headers=headers).json()["total"] == 1
        assert client.get("/api/auth/user", headers=auth_headers(old["accessToken"])).status_code == 401
        refresh = client.post("/api/auth/refresh", json={"refreshToken": old["refreshToken"]})
        assert refresh.status_code == 401

    def test_cannot_revoke_someone_elses_device(self, client, test_user, other_user):
        theirs = login_user(client, "other@test.com", USER_PASSWORD)
        mine = login_user(client, "user@test.com", USER_PASSWORD)

        their_sessions = client.get(
            "/api/auth/devices", headers=auth_headers(theirs["accessToken"])
        ).json()["sessions"]

        response = client.delete(
            f"/api/auth/devices/{their_sessions[0]['id']}",
            headers=auth_headers(mine["accessToken"]),
        )

        assert response.status_code == 404
        assert client.get("/api/auth/user", headers=auth_headers(theirs["accessToken"])).status_code == 200

    def test_logout_all_keeps_current(self, client, test_user):
        first = login_user(client, "user@test.com", USER_PASSWORD, user_agent="Agent-1")
        login_user(client, "user@test.com", USER_PASSWORD, user_agent="Agent-2")
        current = login_user(client, "user@test.com", USER_PASSWORD, user_agent="Agent-3")

        response = client.post("/api/auth/logout-all", headers=auth_headers(current["accessToken"]))

        assert response.status_code == 200
        assert response.json()["revokedCount"] == 2
        assert client.get("/api/auth/user", headers=auth_headers(current["accessToken"])).status_code == 200
        assert client.get("/api/auth/user", headers=auth_headers(first["accessToken"])).status_code == 401


class TestExpiredSessionPurge:
    """Startup cleanup of expired device and cookie sessions."""

    async def test_expired_rows_are_revoked_and_deleted(self, db_session, test_user):
        past = utcnow() - timedelta(days=1)
        future = utcnow() + timedelta(days=1)
        expired_device = DeviceSession(user_id=test_user.id, refresh_token_hash="a" * 64, expires_at=past)
        live_device = DeviceSession(user_id=test_user.id, refresh_token_hash="b" * 64, expires_at=future)
        expired_web = WebSession(sid_hash="c" * 64, csrf_token="x", expires_at=past)
        live_web = WebSession(sid_hash="d" * 64, csrf_token="y", expires_at=future)
        db_session.add_all([expired_device, live_device, expired_web, live_web])
        db_session.commit()

        assert await cleanup_expired_sessions(db_session) == 1
        assert await purge_expired_web_sessions(db_session) == 1

        db_session.expire_all()
        assert db_session.get(DeviceSession, expired_device.id).revoked is True
        assert db_session.get(DeviceSession, live_device.id).revoked is False
        assert db_session.get(WebSession, expired_web.id) is None
        assert db_session.get(WebSession, live_web.id) is not None


# =============================================================================
# ADMIN SESSION CONTROL TESTS
# =============================================================================

class TestAdminSessions:
    """Admin-only session endpoints."""

    def test_non_admin_forbidden(self, client, test_user):
        tokens = login_user(client, "user@test.com", USER_PASSWORD)
        headers = auth_headers(tokens["accessToken"])

        assert client.get("/api/admin/suspicious-logins", headers=headers).status_code == 403
        assert client.get("/api/admin/pending-approvals", headers=headers).status_code == 403
        assert client.get("/api/admin/audit/verify", headers=headers).status_code == 403
        forced = client.post(f"/api/admin/users/{test_user.id}/force-logout", headers=headers)
        assert forced.status_code == 403
        assert forced.json()["code"] == "FORBIDDEN"

    def test_admin_lists_active_sessions(self, client, test_user, test_admin):
        login_user(client, "user@test.com", USER_PASSWORD)
        admin = _login_admin(client)

        response = client.get(
            f"/api/admin/users/{test_user.id}/active-sessions",
            headers=auth_headers(admin["accessToken"]),
        )

        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_force_logout(self, client, test_user, test_admin):
        user_tokens = login_user(client, "user@test.com", USER_PASSWORD)
        admin = _login_admin(client)

        response = client.post(
            f"/api/admin/users/{test_user.id}/force-logout",
            headers=auth_headers(admin["accessToken"]),
        )

        assert response.status_code == 200
        assert response.json()["revokedCount"] == 1
        assert client.get("/api/auth/user", headers=auth_headers(user_tokens["accessToken"])).status_code == 401
        refresh = client.post("/api/auth/refresh", json={"refreshToken": user_tokens["refreshToken"]})
        assert refresh.status_code == 401

    def test_force_logout_self_prevented(self, client, test_admin):
        admin = _login_admin(client)

        response = client.post(
            f"/api/admin/users/{test_admin.id}/force-logout",
            headers=auth_headers(admin["accessToken"]),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "SELF_LOGOUT_PREVENTED"

    def test_revoke_session_must_belong_to_user(self, client, test_user, other_user, test_admin):
        other_tokens = login_user(client, "other@test.com", USER_PASSWORD)
        admin = _login_admin(client)
        headers = auth_headers(admin["accessToken"])

        other_sessions = client.get(
            f"/api/admin/users/{other_user.id}/active-sessions", headers=headers
        ).json()["sessions"]
        session_id = other_sessions[0]["id"]

        mismatched = client.post(f"/api/admin/users/{test_user.id}/revoke-session/{session_id}", headers=headers)
        assert mismatched.status_code == 404

        revoked = client.post(f"/api/admin/users/{other_user.id}/revoke-session/{session_id}", headers=headers)
        assert revoked.status_code == 200
        assert client.get("/api/auth/user", headers=auth_headers(other_tokens["accessToken"])).status_code == 401

    def test_admin_revokes_any_device(self, client, test_user, test_admin):
        user_tokens = login_user(client, "user@test.com", USER_PASSWORD)
        session_id = client.get(
            "/api/auth/devices", headers=auth_headers(user_tokens["accessToken"])
        ).json()["sessions"][0]["id"]
        admin = _login_admin(client)

        response = client.delete(f"/api/auth/devices/{session_id}", headers=auth_headers(admin["accessToken"]))

        assert response.status_code == 200

    def test_unknown_user_404(self, client, test_admin):
        admin = _login_admin(client)

        response = client.get(
            "/api/admin/users/00000000-0000-0000-0000-000000000000/active-sessions",
            headers=auth_headers(admin["accessToken"]),
        )

        assert response.status_code == 404


# =============================================================================
# APPROVAL TESTS
# =============================================================================

class TestApprovals:
    """Admin approval of verified accounts."""

    def test_pending_approvals_listed(self, client, pending_user, test_admin):
        admin = _login_admin(client)

        response = client.get("/api/admin/pending-approvals", headers=auth_headers(admin["accessToken"]))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["users"][0]["email"] == "pending@test.com"

    def test_approve_user_allows_login(self, client, db_session, email_service, pending_user, test_admin):
        admin = _login_admin(client)

        response = client.post(
            f"/api/admin/users/{pending_user.id}/approve",
            headers=auth_headers(admin["accessToken"]),
        )

        assert response.status_code == 200
        assert response.json()["user"]["approvalStatus"] == "approved"
        assert reload_user(db_session, pending_user).approval_status == ApprovalStatus.APPROVED
        assert any(s == "Your account has been approved" for _, s, _ in email_service.to("pending@test.com"))
        assert login_user(client, "pending@test.com", USER_PASSWORD) is not None

    def test_approve_twice_rejected(self, client, pending_user, test_admin):
        admin = _login_admin(client)
        headers = auth_headers(admin["accessToken"])

        client.post(f"/api/admin/users/{pending_user.id}/approve", headers=headers)
        again = client.post(f"/api/admin/users/{pending_user.id}/approve", headers=headers)

        assert again.status_code == 400
        assert again.json()["code"] == "NOT_PENDING_APPROVAL"

    def test_reject_user_with_reason(self, client, email_service, pending_user, test_admin):
        admin = _login_admin(client)

        response = client.post(
            f"/api/admin/users/{pending_user.id}/reject",
            json={"reason": "Unknown organisation"},
            headers=auth_headers(admin["accessToken"]),
        )

        assert response.status_code == 200
        assert response.json()["user"]["approvalStatus"] == "rejected"
        bodies = [b for _, _, b in email_service.to("pending@test.com")]
        assert any("Unknown organisation" in b for b in bodies)

        login = client.post("/api/auth/login", json={"email": "pending@test.com", "password": USER_PASSWORD})
        assert login.json()["code"] == "ACCOUNT_REJECTED"


# =============================================================================
# LOGIN HISTORY AND SUSPICIOUS LOGIN TESTS
# =============================================================================

class TestAuditEndpoints:
    """Login history, suspicious logins and chain verification."""

    def test_login_history(self, client, test_user, test_admin):
        client.post("/api/auth/login", json={"email": "user@test.com", "password": "WrongPass123!"})
        login_user(client, "user@test.com", USER_PASSWORD)
        admin = _login_admin(client)

        response = client.get(
            f"/api/admin/users/{test_user.id}/login-history",
            headers=auth_headers(admin["accessToken"]),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        statuses = [item["status"] for item in data["history"]]
        assert statuses == ["success", "failure"]
        assert data["history"][0]["country"] == "Local Network"

    def test_new_device_flagged_as_suspicious(self, client, email_service, test_user, test_admin):
        login_user(client, "user@test.com", USER_PASSWORD, user_agent=CHROME_WINDOWS)
        login_user(client, "user@test.com", USER_PASSWORD, user_agent=SAFARI_IPHONE)
        admin = _login_admin(client)

        response = client.get("/api/admin/suspicious-logins", headers=auth_headers(admin["accessToken"]))

        assert response.status_code == 200
        data = response.json()
        user_entries = [e for e in data["logins"] if e["user_id"] == str(test_user.id)]
        assert len(user_entries) == 1
        assert user_entries[0]["is_new_device"] is True
        assert "Login from new device: Safari on iOS" in user_entries[0]["suspicious_reasons"]
        assert any(s == "Suspicious login detected" for _, s, _ in email_service.to("admin-inbox@test.com"))
        assert any(s == "New sign-in to your account" for _, s, _ in email_service.to("user@test.com"))

    def test_alert_failure_does_not_block_login(self, client, email_service, test_user):
        """Notification emails are best-effort."""
        login_user(client, "user@test.com", USER_PASSWORD, user_agent=CHROME_WINDOWS)

        with patch.object(email_service, "send_suspicious_login_alert", side_effect=RuntimeError("smtp down")), \
                patch.object(email_service, "send_new_device_notification", side_effect=RuntimeError("smtp down")):
            tokens = login_user(client, "user@test.com", USER_PASSWORD, user_agent=SAFARI_IPHONE)

        assert tokens is not None
        assert tokens["accessToken"]

    def test_first_login_is_not_suspicious(self, client, test_user, test_admin):
        login_user(client, "user@test.com", USER_PASSWORD)
        admin = _login_admin(client)

        response = client.get("/api/admin/suspicious-logins", headers=auth_headers(admin["accessToken"]))

        assert response.json()["total"] == 0

    def test_audit_chain_verifies(self, client, test_user, test_admin):
        login_user(client, "user@test.com", USER_PASSWORD)
        client.post("/api/auth/logout")
        admin = _login_admin(client)

        response = client.get("/api/admin/audit/verify", headers=auth_headers(admin["accessToken"]))

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True
        assert data["event_count"] >= 3
