"""
tests/test_tokens.py -- Unit tests for password hashing, access tokens and refresh tokens.

Covers:
  - bcrypt hash/verify, including a corrupt stored hash
  - access token claims round trip through verify_access_token()
  - distinct failure reasons: expired, bad_signature, malformed
  - refresh tokens: HMAC is deterministic, keyed, and only the hash is persisted
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import ALGORITHM, TokenService, dummy_hash, hash_password, hash_refresh_token, verify_password
from core.config import get_settings
from core.errors import AuthenticationError


class TestPasswordHashing:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_corrupt_hash_is_a_mismatch(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_dummy_hash_is_a_real_bcrypt_hash(self) -> None:
        assert dummy_hash().startswith("$2")
        assert not verify_password("guess", dummy_hash())


class TestAccessTokens:
    def test_round_trip_carries_identity_and_permissions(self, store) -> None:
        tokens = TokenService(store, get_settings())
        admin = store.get_user_by_email("admin@shoporbit.com")
        token = tokens.issue_access_token(admin, ["view_users", "view_dashboard"])

        claims = tokens.verify_access_token(token)

        assert claims.user_id == admin.id
        assert claims.email == "admin@shoporbit.com"
        assert claims.role_key == "admin"
        assert claims.permissions == ["view_dashboard", "view_users"]
        lifetime = (claims.expires_at - claims.issued_at).total_seconds()
        assert lifetime == pytest.approx(get_settings().access_token_expire_seconds, abs=1)

    def test_expired_token_reports_expired(self, store) -> None:
        settings = get_settings()
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {
                "user_id": "u1",
                "email": "a@b.co",
                "role_key": "admin",
                "permissions": [],
                "iat": past,
                "exp": past + timedelta(hours=1),
            },
            settings.secret_key,
            algorithm=ALGORITHM,
        )
        with pytest.raises(AuthenticationError) as excinfo:
            TokenService(store, settings).verify_access_token(token)
        assert excinfo.value.reason == AuthenticationError.REASON_EXPIRED
        assert excinfo.value.message == "Invalid or expired token."

    def test_wrong_key_reports_bad_signature(self, store) -> None:
        token = jwt.encode(
            {
                "user_id": "u1",
                "email": "a@b.co",
                "role_key": "admin",
                "permissions": [],
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
            },
            "x" * 64,
            algorithm=ALGORITHM,
        )
        with pytest.raises(AuthenticationError) as excinfo:
            TokenService(store, get_settings()).verify_access_token(token)
        assert excinfo.value.reason == AuthenticationError.REASON_BAD_SIGNATURE

    def test_garbage_reports_malformed(self, store) -> None:
        with pytest.raises(AuthenticationError) as excinfo:
            TokenService(store, get_settings()).verify_access_token("not-a-jwt")
        assert excinfo.value.reason == AuthenticationError.REASON_MALFORMED

    def test_missing_claims_reports_malformed(self, store) -> None:
        settings = get_settings()
        token = jwt.encode(
            {"user_id": "u1", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            settings.secret_key,
            algorithm=ALGORITHM,
        )
        with pytest.raises(AuthenticationError) as excinfo:
            TokenService(store, settings).verify_access_token(token)
        assert excinfo.value.reason == AuthenticationError.REASON_MALFORMED

    def test_invalid_claim_value_reports_malformed(self, store) -> None:
        settings = get_settings()
        token = jwt.encode(
            {
                "user_id": "u1",
                "email": "a@b.co",
                "role_key": "admin",
                "permissions": [],
                "iat": "yesterday",
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
            },
            settings.secret_key,
            algorithm=ALGORITHM,
        )
        with pytest.raises(AuthenticationError) as excinfo:
            TokenService(store, settings).verify_access_token(token)
        assert excinfo.value.reason == AuthenticationError.REASON_MALFORMED


class TestRefreshTokens:
    def test_hash_is_deterministic_and_keyed(self) -> None:
        assert hash_refresh_token("abc", "k" * 32) == hash_refresh_token("abc", "k" * 32)
        assert hash_refresh_token("abc", "k" * 32) != hash_refresh_token("abc", "j" * 32)
        assert len(hash_refresh_token("abc", "k" * 32)) == 64

    def test_issue_persists_only_the_hash(self, store) -> None:
        tokens = TokenService(store, get_settings())
        admin = store.get_user_by_email("admin@shoporbit.com")

        raw = tokens.issue_refresh_token(admin.id)

        record = store.get_active_refresh_token(tokens.hash_refresh_token(raw))
        assert record is not None
        assert record.user_id == admin.id
        assert record.token_hash != raw
        assert store.get_active_refresh_token(raw) is None

    def test_expiry_follows_settings(self, store) -> None:
        settings = get_settings()
        tokens = TokenService(store, settings)
        admin = store.get_user_by_email("admin@shoporbit.com")

        raw = tokens.issue_refresh_token(admin.id)

        record = store.get_active_refresh_token(tokens.hash_refresh_token(raw))
        expires = datetime.fromisoformat(record.expires_at)
        expected = datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_expire_days)
        assert abs((expires - expected).total_seconds()) < 60
