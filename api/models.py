"""
API request and response models for Orbit Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
Password fields never appear on any response model.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Permission, Role, User

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class UserStatusEnum(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    fields maps request field names to human-readable messages and is only
    present on validation errors.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    # max_length caps input well below anything that could stress bcrypt.
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=512)


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/logout. The token is optional."""

    refresh_token: Optional[str] = Field(default=None, max_length=512)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class RoleSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    key: str
    description: Optional[str] = None
    is_builtin: bool

    @classmethod
    def from_role(cls, role: Role) -> "RoleSummary":
        return cls(
            id=role.id,
            name=role.name,
            key=role.key,
            description=role.description,
            is_builtin=role.is_builtin,
        )


class UserResponse(BaseModel):
    """Public view of a User. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    full_name: str
    role_id: str
    role_key: str
    role_name: str
    status: str
    created_at: str
    updated_at: str
    last_login_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Build a UserResponse from a domain User.

        Factory Method: the mapping lives here, colocated with the output
        model, rather than scattered across route handlers.
        """
        return cls(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            role_id=user.role_id,
            role_key=user.role_key,
            role_name=user.role_name,
            status=user.status,
            created_at=user.created_at,
            updated_at=user.updated_at,
            last_login_at=user.last_login_at,
        )


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginResponse(TokenResponse):
    """Response for POST /api/v1/auth/login: token pair plus who logged in."""

    user: UserResponse
    role: RoleSummary
    permissions: list[str]


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me (live, not from the token)."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    role: RoleSummary
    permissions: list[str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users.

    Email format and password length are checked by UserService so the
    minimum length follows Settings.password_min_length.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    full_name: str = Field(min_length=1, max_length=255)
    role_id: str = Field(min_length=1, max_length=36)
    status: UserStatusEnum = UserStatusEnum.active


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Only set fields are applied."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role_id: Optional[str] = Field(default=None, min_length=1, max_length=36)
    status: Optional[UserStatusEnum] = None


class PasswordChange(BaseModel):
    """Request body for PUT /api/v1/users/{id}/password."""

    password: str = Field(min_length=1, max_length=255)


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]
    pagination: Pagination


class UserDeleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user_id: str
    hard: bool


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    resource: str
    action: str
    description: Optional[str] = None

    @classmethod
    def from_permission(cls, perm: Permission) -> "PermissionResponse":
        return cls(
            id=perm.id,
            key=perm.key,
            resource=perm.resource,
            action=perm.action,
            description=perm.description,
        )


class PermissionGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource: str
    permissions: list[PermissionResponse]


class RoleListItem(RoleSummary):
    """One row in GET /api/v1/roles."""

    permission_count: int
    user_count: int
    created_at: str
    updated_at: str

    @classmethod
    def from_role(cls, role: Role) -> "RoleListItem":
        return cls(
            id=role.id,
            name=role.name,
            key=role.key,
            description=role.description,
            is_builtin=role.is_builtin,
            permission_count=role.permission_count,
            user_count=role.user_count,
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class RoleDetailResponse(RoleSummary):
    """A role with its full permission list."""

    created_at: str
    updated_at: str
    permissions: list[PermissionResponse]

    @classmethod
    def from_detail(cls, role: Role, permissions: list[Permission]) -> "RoleDetailResponse":
        return cls(
            id=role.id,
            name=role.name,
            key=role.key,
            description=role.description,
            is_builtin=role.is_builtin,
            created_at=role.created_at,
            updated_at=role.updated_at,
            permissions=[PermissionResponse.from_permission(p) for p in permissions],
        )


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles. key is derived from name when omitted."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    key: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    permission_ids: list[str] = Field(default_factory=list, max_length=500)


class RolePatch(BaseModel):
    """Request body for PATCH /api/v1/roles/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    permission_ids: Optional[list[str]] = Field(default=None, max_length=500)


class RolePermissionsUpdate(BaseModel):
    """Request body for PUT /api/v1/roles/{id}/permissions."""

    permission_ids: list[str] = Field(max_length=500)


class RoleDeleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    role_id: str


# ---------------------------------------------------------------------------
# Probe pages
# ---------------------------------------------------------------------------


class DashboardResponse(BaseModel):
    """Response for GET /api/v1/dashboard."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    role_key: str
    permissions: list[str]


class ReportsResponse(BaseModel):
    """Response for GET /api/v1/reports."""

    model_config = ConfigDict(frozen=True)

    total_users: int
    users_by_status: dict[str, int]
    total_roles: int
    roles: list[RoleListItem]
