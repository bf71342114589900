"""
auth/service.py -- Login, refresh, logout and current-user resolution.

AuthService is synchronous and CPU-bound on bcrypt. The HTTP layer calls
login() and refresh() through asyncio.to_thread so concurrent logins do not
serialize on the event loop.

Failure messages are deliberately uniform:
  unknown email and wrong password both raise
      AuthenticationError("Invalid email or password.")
  every refresh failure raises
      AuthenticationError("Invalid or expired refresh token.")
The distinguishing reason is attached to the exception and logged by the
error handler, never returned to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from auth.models import Role, User
from auth.store import CredentialStore
from auth.tokens import TokenService, dummy_hash, verify_password
from core.config import Settings, get_settings
from core.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger("orbitauth.auth")

_BAD_CREDENTIALS = "Invalid email or password."
_BAD_REFRESH = "Invalid or expired refresh token."


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


@dataclass
class LoginResult:
    tokens: TokenPair
    user: User
    role: Role
    permissions: list[str] = field(default_factory=list)


@dataclass
class CurrentUser:
    user: User
    role: Role
    permissions: list[str] = field(default_factory=list)


class AuthService:
    """Authentication workflows over an injected CredentialStore."""

    def __init__(self, store: CredentialStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.tokens = TokenService(store, self.settings)

    def login(self, email: str, password: str) -> LoginResult:
        """Authenticate with email and password and issue a token pair.

        bcrypt runs whether or not the email exists, so response time does
        not reveal which emails are registered. The password is verified
        before the account status is consulted: a caller without the right
        password learns nothing about whether the account is suspended.
        """
        normalized = email.strip().lower()
        user = self.store.get_user_by_email(normalized)
        if user is None:
            verify_password(password, dummy_hash())
            raise AuthenticationError(_BAD_CREDENTIALS, reason=AuthenticationError.REASON_BAD_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            raise AuthenticationError(_BAD_CREDENTIALS, reason=AuthenticationError.REASON_BAD_CREDENTIALS)
        if not user.is_active:
            logger.warning("Login refused for %s: account status is %s", user.email, user.status)
            raise AuthorizationError("Account is not active.")

        role = self.store.get_role_by_id(user.role_id)
        permissions = self.store.get_role_permission_keys(user.role_id)
        self.store.update_last_login(user.id)
        tokens = self._issue_pair(user, permissions)
        logger.info("User %s logged in (role=%s)", user.email, user.role_key)
        refreshed = self.store.get_user_by_id(user.id) or user
        return LoginResult(tokens=tokens, user=refreshed, role=role, permissions=permissions)

    def refresh(self, raw_refresh_token: str) -> TokenPair:
        """Rotate a refresh token: consume the presented one, mint a new pair.

        The presented token is revoked with a conditional update before any
        new token exists. If two requests race with the same token only one
        sees the update succeed; the other is rejected as a replay.
        """
        if not raw_refresh_token:
            raise AuthenticationError(_BAD_REFRESH, reason=AuthenticationError.REASON_REFRESH_INVALID)

        record = self.store.get_active_refresh_token(self.tokens.hash_refresh_token(raw_refresh_token))
        if record is None:
            raise AuthenticationError(_BAD_REFRESH, reason=AuthenticationError.REASON_REFRESH_INVALID)
        if _is_expired(record.expires_at):
            raise AuthenticationError(_BAD_REFRESH, reason=AuthenticationError.REASON_REFRESH_EXPIRED)
        if not self.store.revoke_refresh_token(record.id):
            logger.warning("Refresh token %s replayed concurrently for user %s", record.id, record.user_id)
            raise AuthenticationError(_BAD_REFRESH, reason=AuthenticationError.REASON_REFRESH_INVALID)

        user = self.store.get_user_by_id(record.user_id)
        if user is None or not user.is_active:
            raise AuthenticationError(_BAD_REFRESH, reason=AuthenticationError.REASON_USER_GONE)

        permissions = self.store.get_role_permission_keys(user.role_id)
        logger.debug("Rotated refresh token for %s", user.email)
        return self._issue_pair(user, permissions)

    def logout(self, raw_refresh_token: str | None, user_id: str | None = None) -> bool:
        """Revoke the presented refresh token. Idempotent.

        When user_id is given, only a token owned by that user is revoked.
        Returns True if a token was revoked by this call.
        """
        if not raw_refresh_token:
            return False
        revoked = self.store.revoke_refresh_token_by_hash(self.tokens.hash_refresh_token(raw_refresh_token), user_id)
        if revoked:
            logger.info("Refresh token revoked on logout (user=%s)", user_id)
        return revoked

    def get_current_user(self, user_id: str) -> CurrentUser:
        """Re-read the user, role and live permission set."""
        user = self.store.get_user_by_id(user_id)
        if user is None:
            raise AuthenticationError("Authentication required.", reason=AuthenticationError.REASON_USER_GONE)
        role = self.store.get_role_by_id(user.role_id)
        permissions = self.store.get_role_permission_keys(user.role_id)
        return CurrentUser(user=user, role=role, permissions=permissions)

    def _issue_pair(self, user: User, permissions: list[str]) -> TokenPair:
        return TokenPair(
            access_token=self.tokens.issue_access_token(user, permissions),
            refresh_token=self.tokens.issue_refresh_token(user.id),
            expires_in=self.tokens.access_token_ttl,
        )


def _is_expired(expires_at: str) -> bool:
    return datetime.fromisoformat(expires_at) <= datetime.now(timezone.utc)
