"""
api/routes/v1/roles.py -- Role and permission management REST endpoints.

Routes:
  GET    /api/v1/roles                    -- all roles with permission and user counts
  GET    /api/v1/roles/{id}               -- role with its permissions
  POST   /api/v1/roles                    -- create custom role (>= 1 permission)
  PATCH  /api/v1/roles/{id}               -- rename / describe / replace permissions
  PUT    /api/v1/roles/{id}/permissions   -- replace the permission set
  DELETE /api/v1/roles/{id}               -- delete an unused custom role
  GET    /api/v1/permissions              -- permission catalogue grouped by resource

Built-in roles reject every mutation with 403.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import (
    PermissionGroup,
    PermissionResponse,
    RoleCreate,
    RoleDeleteResponse,
    RoleDetailResponse,
    RoleListItem,
    RolePatch,
    RolePermissionsUpdate,
)
from auth.dependencies import get_role_service, require_admin, require_permission
from auth.models import Principal
from auth.roles import RoleDetail, RoleService

# Auth policy:
# - GET    /api/v1/roles, /roles/{id}, /permissions:  view_roles
# - POST   /api/v1/roles:                             create_roles
# - PATCH  /api/v1/roles/{id}, PUT .../permissions:   edit_roles
# - DELETE /api/v1/roles/{id}:                        admin role (require_admin)
router = APIRouter()


def _detail(detail: RoleDetail) -> RoleDetailResponse:
    return RoleDetailResponse.from_detail(detail.role, detail.permissions)


@router.get("/roles", response_model=list[RoleListItem])
def list_roles(
    _: Principal = Depends(require_permission("view_roles")),
    service: RoleService = Depends(get_role_service),
) -> list[RoleListItem]:
    return [RoleListItem.from_role(r) for r in service.list_roles()]


@router.get("/roles/{role_id}", response_model=RoleDetailResponse)
def get_role(
    role_id: str,
    _: Principal = Depends(require_permission("view_roles")),
    service: RoleService = Depends(get_role_service),
) -> RoleDetailResponse:
    return _detail(service.get_role(role_id))


@router.post("/roles", response_model=RoleDetailResponse, status_code=201)
def create_role(
    body: RoleCreate,
    _: Principal = Depends(require_permission("create_roles")),
    service: RoleService = Depends(get_role_service),
) -> RoleDetailResponse:
    return _detail(
        service.create_role(
            name=body.name,
            permission_ids=body.permission_ids,
            description=body.description,
            key=body.key,
        )
    )


@router.patch("/roles/{role_id}", response_model=RoleDetailResponse)
def update_role(
    role_id: str,
    body: RolePatch,
    _: Principal = Depends(require_permission("edit_roles")),
    service: RoleService = Depends(get_role_service),
) -> RoleDetailResponse:
    return _detail(
        service.update_role(
            role_id,
            name=body.name,
            description=body.description,
            permission_ids=body.permission_ids,
        )
    )


@router.put("/roles/{role_id}/permissions", response_model=RoleDetailResponse)
def assign_permissions(
    role_id: str,
    body: RolePermissionsUpdate,
    _: Principal = Depends(require_permission("edit_roles")),
    service: RoleService = Depends(get_role_service),
) -> RoleDetailResponse:
    return _detail(service.assign_permissions(role_id, body.permission_ids))


@router.delete("/roles/{role_id}", response_model=RoleDeleteResponse)
def delete_role(
    role_id: str,
    _: Principal = Depends(require_admin),
    service: RoleService = Depends(get_role_service),
) -> RoleDeleteResponse:
    """Delete a custom role. 403 for built-ins, 409 (with user_count) while in use."""
    role = service.delete_role(role_id)
    return RoleDeleteResponse(message=f"Role '{role.name}' deleted.", role_id=role_id)


@router.get("/permissions", response_model=list[PermissionGroup])
def list_permissions(
    _: Principal = Depends(require_permission("view_roles")),
    service: RoleService = Depends(get_role_service),
) -> list[PermissionGroup]:
    return [
        PermissionGroup(
            resource=group["resource"],
            permissions=[PermissionResponse.from_permission(p) for p in group["permissions"]],
        )
        for group in service.list_permissions_grouped()
    ]
