"""
auth/tokens.py -- Password hashing, access-token JWTs and refresh tokens.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and
       carry user_id, email, role_key, the role's permission keys at issuance,
       iat and exp. A token is self-contained: authorization checks read the
       embedded permission snapshot without touching the database, so a role
       change takes effect for a user at their next login or refresh.

  Verification raises AuthenticationError with a reason that separates
       malformed input, a bad signature and expiry. The reason is logged;
       callers only ever see a generic 401.

  Passwords: bcrypt, used directly (no passlib wrapper; passlib's wrap-bug
       probe trips bcrypt 4.x). The dummy hash enables timing equalization in
       login so response time does not reveal whether an email exists.

  Refresh tokens: secrets.token_urlsafe(48) gives 384 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw_token) so lookup is an indexed equality
       query; bcrypt's intentional slowness buys nothing against a value that
       cannot be brute-forced. The raw value leaves the process exactly once.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import AccessClaims, RefreshToken
from core.config import Settings, get_settings
from core.errors import AuthenticationError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import CredentialStore

logger = logging.getLogger("orbitauth.tokens")

ALGORITHM = "HS256"

_REQUIRED_CLAIMS = ("user_id", "email", "role_key", "permissions", "exp")

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    rounds defaults to Settings.bcrypt_rounds. Passwords longer than 72 bytes
    are truncated by bcrypt; the API layer caps input length well below that
    in practice.
    """
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A corrupt or non-bcrypt hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache
def dummy_hash() -> str:
    """Hash checked against when the email is unknown.

    Built with the configured cost so the unknown-email path does the same
    bcrypt work as a real mismatch. Cached after the first call.
    """
    return hash_password("orbitauth_timing_dummy")


# ---------------------------------------------------------------------------
# Refresh token primitives
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def hash_refresh_token(raw_token: str, secret_key: str | None = None) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Keyed with SECRET_KEY so a leaked table cannot be matched against
    guessed tokens without the key. Deterministic, so lookup is O(1).
    """
    key = secret_key if secret_key is not None else get_settings().secret_key
    return hmac.new(key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Mints and verifies access tokens and issues persisted refresh tokens.

    Usage:
        tokens = TokenService(store, get_settings())
        access = tokens.issue_access_token(user, ["view_dashboard"])
        claims = tokens.verify_access_token(access)
        refresh = tokens.issue_refresh_token(user.id)
    """

    def __init__(self, store: CredentialStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    @property
    def access_token_ttl(self) -> int:
        return self.settings.access_token_expire_seconds

    def issue_access_token(self, user: User, permission_keys: list[str]) -> str:
        """Encode a signed JWT carrying identity, role and a permission snapshot."""
        issued_at = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "user_id": user.id,
            "email": user.email,
            "role_key": user.role_key,
            "permissions": sorted(permission_keys),
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self.access_token_ttl),
        }
        return jwt.encode(payload, self.settings.secret_key, algorithm=ALGORITHM)

    def verify_access_token(self, token: str) -> AccessClaims:
        """Decode and verify an access token.

        Raises AuthenticationError with reason "expired", "bad_signature" or
        "malformed". The caller-facing message is the same for all three.
        """
        try:
            payload = jwt.decode(token, self.settings.secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise AuthenticationError("Invalid or expired token.", reason=AuthenticationError.REASON_EXPIRED)
        except JWTClaimsError:
            raise AuthenticationError("Invalid or expired token.", reason=AuthenticationError.REASON_MALFORMED)
        except JWTError:
            raise AuthenticationError("Invalid or expired token.", reason=self._classify_decode_failure(token))

        missing = [claim for claim in _REQUIRED_CLAIMS if claim not in payload]
        if missing or not isinstance(payload["permissions"], list):
            raise AuthenticationError("Invalid or expired token.", reason=AuthenticationError.REASON_MALFORMED)

        return AccessClaims(
            user_id=str(payload["user_id"]),
            email=payload["email"],
            role_key=payload["role_key"],
            permissions=[str(p) for p in payload["permissions"]],
            issued_at=datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    @staticmethod
    def _classify_decode_failure(token: str) -> str:
        # A token whose claims cannot even be read unverified was never a JWT.
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return AuthenticationError.REASON_MALFORMED
        return AuthenticationError.REASON_BAD_SIGNATURE

    def hash_refresh_token(self, raw_token: str) -> str:
        return hash_refresh_token(raw_token, self.settings.secret_key)

    def issue_refresh_token(self, user_id: str) -> str:
        """Create and persist a refresh token for user_id. Returns the raw value.

        Only the HMAC of the raw value is stored.
        """
        raw = generate_refresh_token()
        expires_at = datetime.now(timezone.utc) + timedelta(days=self.settings.refresh_token_expire_days)
        self.store.create_refresh_token(
            RefreshToken(
                user_id=user_id,
                token_hash=self.hash_refresh_token(raw),
                expires_at=_iso(expires_at),
            )
        )
        return raw
