"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

One auth method: Authorization: Bearer <access token>. The token is verified
locally (signature and expiry) and its embedded permission snapshot is the
authority for every check here. No database read happens on this path.

get_principal() raises AuthenticationError (401) when the token is missing
or fails verification, and attaches the Principal to request.state.

require_permission(key) / require_any_permission(*keys) / require_admin()
wrap get_principal() and raise AuthorizationError (403) on denial.

Service providers (get_store, get_auth_service, ...) hand routes the
services built over the CredentialStore that the lifespan put on app.state.

Layer rule: auth/dependencies.py may import from fastapi (for Depends/Request)
because this module is part of the FastAPI dependency injection system.
Errors are raised as core.errors types and rendered by api/main.py.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, Request

from auth.models import Principal
from auth.permissions import has_any_permission, resolve_permissions
from auth.roles import RoleService
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenService
from auth.users import UserService
from core.config import get_settings
from core.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger("orbitauth.authz")


# ---------------------------------------------------------------------------
# Service providers
# ---------------------------------------------------------------------------


def get_store(request: Request) -> CredentialStore:
    return request.app.state.store


def get_auth_service(store: CredentialStore = Depends(get_store)) -> AuthService:
    return AuthService(store, get_settings())


def get_user_service(store: CredentialStore = Depends(get_store)) -> UserService:
    return UserService(store, get_settings())


def get_role_service(store: CredentialStore = Depends(get_store)) -> RoleService:
    return RoleService(store)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def bearer_token(request: Request) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header, or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_principal(request: Request) -> Principal:
    """Require a valid access token. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_principal)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise AuthenticationError("Authentication required.", reason=AuthenticationError.REASON_MISSING)

    claims = TokenService(request.app.state.store, get_settings()).verify_access_token(token)
    principal = Principal(
        user_id=claims.user_id,
        email=claims.email,
        role_key=claims.role_key,
        permissions=claims.permissions,
    )
    request.state.principal = principal
    return principal


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


def _deny(principal: Principal, required: tuple[str, ...]) -> AuthorizationError:
    logger.warning(
        "Permission denied: %s (role=%s) lacks %s",
        principal.email,
        principal.role_key,
        " or ".join(required),
    )
    resource = required[0].partition("_")[2] or required[0]
    return AuthorizationError(
        f"You do not have permission to access {resource}.",
        detail={"required": list(required)},
    )


def require_any_permission(*keys: str) -> Callable[..., Principal]:
    """Dependency factory: pass if the principal holds at least one of keys.

    Usage:
        @router.get("/reports", dependencies=[Depends(require_any_permission("view_reports"))])
    """
    if not keys:
        raise ValueError("require_any_permission() needs at least one permission key")

    def _check(principal: Principal = Depends(get_principal)) -> Principal:
        granted = resolve_permissions(principal.permissions, get_settings().permission_inheritance)
        if not has_any_permission(granted, keys):
            raise _deny(principal, keys)
        return principal

    return _check


def require_permission(key: str) -> Callable[..., Principal]:
    """Dependency factory: pass if the principal holds key."""
    return require_any_permission(key)


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Require the administrative role (Settings.admin_role_key)."""
    if principal.role_key != get_settings().admin_role_key:
        logger.warning("Admin role required: %s has role %s", principal.email, principal.role_key)
        raise AuthorizationError("Administrator role required.")
    return principal
