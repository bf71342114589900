"""
api/routes/v1/auth.py -- Login, token refresh, logout and current-user endpoints.

Routes:
  POST /api/v1/auth/login      -- email/password login; returns token pair + user
  POST /api/v1/auth/refresh    -- rotate a refresh token; returns a new pair
  POST /api/v1/auth/logout     -- revoke the presented refresh token (requires auth)
  GET  /api/v1/auth/me         -- live user, role and permissions (requires auth)

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  Unknown email and wrong password return the same 401 body.
  Cache-Control: no-store on every response that carries tokens.
  bcrypt work runs in a worker thread so it never blocks the event loop.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RoleSummary,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_principal
from auth.models import Principal
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:  public -- the refresh token itself is the credential
# - POST /api/v1/auth/logout:   requires auth (get_principal); only the caller's own token is revoked
# - GET  /api/v1/auth/me:       requires auth (get_principal)
router = APIRouter()


def _no_store(payload: dict) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(login_rate_limit)  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
async def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; return access + refresh tokens.

    401 for unknown email or wrong password (same message for both),
    403 when the password is right but the account is not active.
    """
    result = await asyncio.to_thread(service.login, body.email, body.password)
    return _no_store(
        LoginResponse(
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            token_type=result.tokens.token_type,
            expires_in=result.tokens.expires_in,
            user=UserResponse.from_user(result.user),
            role=RoleSummary.from_role(result.role),
            permissions=result.permissions,
        ).model_dump()
    )


@router.post("/auth/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is consumed."""
    pair = await asyncio.to_thread(service.refresh, body.refresh_token)
    return _no_store(
        TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        ).model_dump()
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    body: LogoutRequest | None = None,
    principal: Principal = Depends(get_principal),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the presented refresh token. Idempotent.

    The access token stays valid until it expires; clients discard it.
    """
    service.logout(body.refresh_token if body else None, user_id=principal.user_id)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=MeResponse)
def me(
    principal: Principal = Depends(get_principal),
    service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    """Return the caller's current user record, role and live permissions."""
    current = service.get_current_user(principal.user_id)
    return MeResponse(
        user=UserResponse.from_user(current.user),
        role=RoleSummary.from_role(current.role),
        permissions=current.permissions,
    )
