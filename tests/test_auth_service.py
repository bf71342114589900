"""
tests/test_auth_service.py -- Unit tests for AuthService login / refresh / logout / me.

Covers:
  - login snapshot equals the role's permission set; last_login_at stamped
  - unknown email and wrong password are indistinguishable to the caller
  - non-active accounts are refused with 403 after the password checks out
  - refresh rotation: the presented token is consumed, replay is rejected
  - expired and revoked refresh tokens are rejected
  - refresh refuses users that were deactivated after login
  - logout is idempotent and scoped to the caller's own tokens
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.models import RefreshToken
from auth.service import AuthService
from core.config import get_settings
from core.errors import AuthenticationError, AuthorizationError

ADMIN_EMAIL = "admin@shoporbit.com"
ADMIN_PASSWORD = "AdminPass123!"


@pytest.fixture
def service(store) -> AuthService:
    return AuthService(store, get_settings())


class TestLogin:
    def test_admin_login_returns_full_permission_snapshot(self, service, store) -> None:
        result = service.login(ADMIN_EMAIL, ADMIN_PASSWORD)

        role = store.get_role_by_key("admin")
        assert result.role.key == "admin"
        assert result.permissions == store.get_role_permission_keys(role.id)
        claims = service.tokens.verify_access_token(result.tokens.access_token)
        assert sorted(claims.permissions) == sorted(result.permissions)
        assert result.tokens.expires_in == get_settings().access_token_expire_seconds
        assert result.user.last_login_at is not None

    def test_email_is_case_insensitive(self, service) -> None:
        result = service.login("  ADMIN@ShopOrbit.com ", ADMIN_PASSWORD)
        assert result.user.email == ADMIN_EMAIL

    def test_sales_agent_snapshot(self, service, store, make_user) -> None:
        make_user(store, "agent@example.com", password="AgentPass1")
        result = service.login("agent@example.com", "AgentPass1")
        assert "view_reports" not in result.permissions
        assert "view_dashboard" in result.permissions

    def test_unknown_email_and_bad_password_look_identical(self, service) -> None:
        with pytest.raises(AuthenticationError) as unknown:
            service.login("nobody@example.com", "whatever123")
        with pytest.raises(AuthenticationError) as wrong:
            service.login(ADMIN_EMAIL, "wrong-password")
        assert unknown.value.message == wrong.value.message == "Invalid email or password."
        assert unknown.value.status_code == wrong.value.status_code == 401

    @pytest.mark.parametrize("status", ["inactive", "suspended"])
    def test_non_active_account_refused(self, service, store, make_user, status) -> None:
        make_user(store, f"{status}@example.com", password="Password123", status=status)
        with pytest.raises(AuthorizationError) as excinfo:
            service.login(f"{status}@example.com", "Password123")
        assert excinfo.value.message == "Account is not active."

    def test_non_active_account_with_wrong_password_is_401(self, service, store, make_user) -> None:
        make_user(store, "held@example.com", password="Password123", status="suspended")
        with pytest.raises(AuthenticationError):
            service.login("held@example.com", "not-the-password")


class TestRefresh:
    def test_rotation_consumes_presented_token(self, service) -> None:
        first = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens

        second = service.refresh(first.refresh_token)

        assert second.refresh_token != first.refresh_token
        assert service.tokens.verify_access_token(second.access_token).email == ADMIN_EMAIL
        with pytest.raises(AuthenticationError) as excinfo:
            service.refresh(first.refresh_token)
        assert excinfo.value.reason == AuthenticationError.REASON_REFRESH_INVALID
        # The rotated-in token still works.
        assert service.refresh(second.refresh_token).access_token

    def test_unknown_token_rejected(self, service) -> None:
        with pytest.raises(AuthenticationError):
            service.refresh("definitely-not-issued")

    def test_empty_token_rejected(self, service) -> None:
        with pytest.raises(AuthenticationError):
            service.refresh("")

    def test_expired_token_rejected(self, service, store) -> None:
        admin = store.get_user_by_email(ADMIN_EMAIL)
        raw = "expired-refresh-token-value"
        store.create_refresh_token(
            RefreshToken(
                user_id=admin.id,
                token_hash=service.tokens.hash_refresh_token(raw),
                expires_at=(datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat(timespec="microseconds"),
            )
        )
        with pytest.raises(AuthenticationError) as excinfo:
            service.refresh(raw)
        assert excinfo.value.reason == AuthenticationError.REASON_REFRESH_EXPIRED

    def test_logged_out_token_rejected(self, service) -> None:
        tokens = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens
        service.logout(tokens.refresh_token)
        with pytest.raises(AuthenticationError):
            service.refresh(tokens.refresh_token)

    def test_deactivated_user_cannot_refresh(self, service, store, make_user) -> None:
        user = make_user(store, "leaver@example.com", password="Password123")
        tokens = service.login("leaver@example.com", "Password123").tokens
        store.update_user(user.id, status="inactive")
        with pytest.raises(AuthenticationError) as excinfo:
            service.refresh(tokens.refresh_token)
        assert excinfo.value.reason == AuthenticationError.REASON_USER_GONE

    def test_refresh_picks_up_new_permissions(self, service, store, make_user) -> None:
        make_user(store, "agent@example.com", password="Password123")
        tokens = service.login("agent@example.com", "Password123").tokens
        role = store.get_role_by_key("sales_agent")
        reports = store.get_permission_by_key("view_reports")
        store.replace_role_permissions(role.id, [reports.id])

        refreshed = service.refresh(tokens.refresh_token)

        assert service.tokens.verify_access_token(refreshed.access_token).permissions == ["view_reports"]


class TestLogoutAndMe:
    def test_logout_is_idempotent(self, service) -> None:
        tokens = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens
        assert service.logout(tokens.refresh_token) is True
        assert service.logout(tokens.refresh_token) is False
        assert service.logout(None) is False

    def test_logout_only_revokes_callers_token(self, service, store, make_user) -> None:
        other = make_user(store, "other@example.com", password="Password123")
        admin_tokens = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens
        assert service.logout(admin_tokens.refresh_token, user_id=other.id) is False
        assert service.refresh(admin_tokens.refresh_token).access_token

    def test_get_current_user_reads_live_state(self, service, store) -> None:
        admin = store.get_user_by_email(ADMIN_EMAIL)
        current = service.get_current_user(admin.id)
        assert current.user.email == ADMIN_EMAIL
        assert current.role.key == "admin"
        assert len(current.permissions) == 15

    def test_get_current_user_for_deleted_user(self, service) -> None:
        with pytest.raises(AuthenticationError):
            service.get_current_user("00000000-0000-0000-0000-000000000000")
