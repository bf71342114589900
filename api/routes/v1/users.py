"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  GET    /api/v1/users                  -- paginated list with search/status/role filters
  GET    /api/v1/users/{id}             -- single user
  POST   /api/v1/users                  -- create user
  PATCH  /api/v1/users/{id}             -- update full_name / role_id / status
  PUT    /api/v1/users/{id}/password    -- set a new password; revokes refresh tokens
  DELETE /api/v1/users/{id}?hard=false  -- soft delete (default) or hard delete

Safety rules (self role/status change, self-delete, last active admin) are
enforced in auth/users.py, not here.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.models import (
    MessageResponse,
    Pagination,
    PasswordChange,
    UserCreate,
    UserDeleteResponse,
    UserListResponse,
    UserPatch,
    UserResponse,
    UserStatusEnum,
)
from auth.dependencies import get_user_service, require_admin, require_permission
from auth.models import Principal
from auth.users import MAX_PAGE_SIZE, UserService

# Auth policy:
# - GET    /api/v1/users, /users/{id}:   view_users
# - POST   /api/v1/users:                create_users
# - PATCH  /api/v1/users/{id}:           edit_users
# - PUT    /api/v1/users/{id}/password:  edit_users
# - DELETE /api/v1/users/{id}:           delete_users; hard=true additionally requires the admin role
router = APIRouter()


@router.get("/users", response_model=UserListResponse)
def list_users(
    search: Optional[str] = Query(default=None, max_length=255),
    status: Optional[UserStatusEnum] = None,
    role_id: Optional[str] = Query(default=None, max_length=36),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
    _: Principal = Depends(require_permission("view_users")),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    result = service.list_users(
        search=search,
        status=status.value if status else None,
        role_id=role_id,
        page=page,
        limit=limit,
    )
    return UserListResponse(
        users=[UserResponse.from_user(u) for u in result.users],
        pagination=Pagination(page=result.page, limit=result.limit, total=result.total, pages=result.pages),
    )


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    _: Principal = Depends(require_permission("view_users")),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    return UserResponse.from_user(service.get_user(user_id))


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    body: UserCreate,
    _: Principal = Depends(require_permission("create_users")),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """Create a user. 409 if the email exists, 404 if the role does not."""
    user = await asyncio.to_thread(
        service.create_user,
        body.email,
        body.password,
        body.full_name,
        body.role_id,
        body.status.value,
    )
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    body: UserPatch,
    principal: Principal = Depends(require_permission("edit_users")),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """Update full_name, role_id and/or status.

    403 when the caller targets their own role or status; 409 when the
    change would leave no active administrator.
    """
    changes = body.model_dump(exclude_none=True, mode="json")
    return UserResponse.from_user(service.update_user(user_id, changes, actor_id=principal.user_id))


@router.put("/users/{user_id}/password", response_model=MessageResponse)
async def change_password(
    user_id: str,
    body: PasswordChange,
    _: Principal = Depends(require_permission("edit_users")),
    service: UserService = Depends(get_user_service),
) -> MessageResponse:
    await asyncio.to_thread(service.change_password, user_id, body.password)
    return MessageResponse(message="Password updated.")


@router.delete("/users/{user_id}", response_model=UserDeleteResponse)
def delete_user(
    user_id: str,
    hard: bool = False,
    principal: Principal = Depends(require_permission("delete_users")),
    service: UserService = Depends(get_user_service),
) -> UserDeleteResponse:
    """Deactivate a user, or remove the record entirely with ?hard=true (admin only)."""
    if hard:
        require_admin(principal)
    service.delete_user(user_id, actor_id=principal.user_id, hard=hard)
    return UserDeleteResponse(
        message="User deleted." if hard else "User deactivated.",
        user_id=user_id,
        hard=hard,
    )
