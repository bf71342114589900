"""
api/routes/v1/dashboard.py -- Permission-gated probe pages.

  GET /api/v1/dashboard  -- view_dashboard: echoes the caller's token identity
  GET /api/v1/reports    -- view_reports: user and role counts

These stand in for the business pages of the wider application. Their job is
to put a real permission check in front of a real response.
Read-only routes -- no mutations here.
"""

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import DashboardResponse, ReportsResponse, RoleListItem
from auth.dependencies import get_store, require_permission
from auth.models import Principal
from auth.store import CredentialStore

# Auth policy:
# - GET /api/v1/dashboard: view_dashboard
# - GET /api/v1/reports:   view_reports
router = APIRouter()


@limiter.limit("60/minute")
@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    request: Request,
    principal: Principal = Depends(require_permission("view_dashboard")),
) -> DashboardResponse:
    """Return the identity and permission snapshot the caller's token carries."""
    return DashboardResponse(
        user_id=principal.user_id,
        email=principal.email,
        role_key=principal.role_key,
        permissions=principal.permissions,
    )


@router.get("/reports", response_model=ReportsResponse)
def get_reports(
    _: Principal = Depends(require_permission("view_reports")),
    store: CredentialStore = Depends(get_store),
) -> ReportsResponse:
    """Return user counts by status and every role with its counts."""
    by_status = store.count_users_by_status()
    roles = store.list_roles()
    return ReportsResponse(
        total_users=sum(by_status.values()),
        users_by_status=by_status,
        total_roles=len(roles),
        roles=[RoleListItem.from_role(r) for r in roles],
    )
