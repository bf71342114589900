"""
auth/models.py -- Domain dataclasses for authentication and authorization.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these; services and routes pass them around. The HTTP contract lives in
api/models.py, not here.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

USER_STATUSES = ("active", "inactive", "suspended")


@dataclass
class Role:
    """A named bucket of permissions.

    is_builtin roles are seeded by the system and reject rename, edit,
    permission reassignment and deletion.

    permission_count / user_count are only populated by CredentialStore.list_roles().
    """

    name: str
    key: str
    id: str | None = None
    description: str | None = None
    is_builtin: bool = False
    created_at: str = ""
    updated_at: str = ""
    permission_count: int = 0
    user_count: int = 0


@dataclass
class Permission:
    """An atomic capability. key is "{action}_{resource}" (e.g. view_reports)."""

    key: str
    resource: str
    action: str
    id: str | None = None
    description: str | None = None
    created_at: str = ""


@dataclass
class User:
    """An identity record.

    email is always stored lowercase. role_key / role_name are filled in from
    the joined roles row on every read so callers never need a second lookup.
    """

    email: str
    full_name: str
    role_id: str
    id: str | None = None
    password_hash: str = ""
    status: str = "active"  # "active" | "inactive" | "suspended"
    created_at: str = ""
    updated_at: str = ""
    last_login_at: str | None = None
    role_key: str = ""
    role_name: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass
class RefreshToken:
    """A server-side record of an issued refresh token.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw value is
    returned to the client once and never persisted.
    """

    user_id: str
    token_hash: str
    expires_at: str  # ISO 8601 UTC
    id: str | None = None
    created_at: str = ""
    revoked_at: str | None = None


@dataclass
class AccessClaims:
    """Verified payload of an access token."""

    user_id: str
    email: str
    role_key: str
    permissions: list[str]
    issued_at: datetime
    expires_at: datetime


@dataclass
class Principal:
    """The authenticated caller, attached to request.state by get_principal()."""

    user_id: str
    email: str
    role_key: str
    permissions: list[str] = field(default_factory=list)
