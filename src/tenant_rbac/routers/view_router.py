"""
Route-guarded views.

Payloads carry `visible` flags for conditional rendering. They are hints
only; the services enforce permissions again on every mutation.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from tenant_rbac.auth.dependencies import get_evaluator, get_principal, get_route_guard, route_permission
from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.configs.settings import get_settings
from tenant_rbac.errors import RedirectRequired, UpstreamError
from tenant_rbac.rbac.evaluator import PermissionEvaluator
from tenant_rbac.rbac.guards import RouteGuard
from tenant_rbac.rbac.types import NoRole, Permission
from tenant_rbac.repositories.profile_store import StoreError
from tenant_rbac.utils.response import success

log = get_logger(__name__)

router = APIRouter(tags=["views"])

_HINTS = (
    Permission.ADMIN_PANEL,
    Permission.USER_MANAGE,
    Permission.CSV_UPLOAD,
    Permission.AI_ACCESS,
    Permission.FINANCIAL_DATA_CREATE,
)


async def _visible(evaluator: PermissionEvaluator, principal: Principal | None) -> dict[str, bool]:
    _, granted = await evaluator.permissions_for(principal)
    return {p.value: p in granted for p in _HINTS}


@router.get("/dashboard")
async def dashboard(
    request: Request,
    principal: Principal | None = Depends(get_principal),
    guard: RouteGuard = Depends(get_route_guard),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> dict:
    settings = get_settings()
    if principal is None:
        raise RedirectRequired(settings.login_path)

    # First authenticated access creates the company and profile.
    try:
        _, company = await request.app.state.profile_store.ensure_profile(principal.user_id, principal.email)
    except StoreError as exc:
        log.error("view.dashboard.ensure_profile_failed principal=%s error=%s", principal.user_id, exc)
        raise UpstreamError() from exc

    # Redirecting to the dashboard itself would loop.
    await guard.guard_route(principal, Permission.DASHBOARD_VIEW, redirect_to=settings.login_path)
    return success(
        {
            "view": "dashboard",
            "company": {"id": company.id, "name": company.name},
            "visible": await _visible(evaluator, principal),
        }
    )


@router.get("/dashboard/ai")
async def ai_insights(
    principal: Principal = Depends(route_permission(Permission.AI_ACCESS)),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> dict:
    return success({"view": "ai_insights", "visible": await _visible(evaluator, principal)})


@router.get("/dashboard/import")
async def import_view(
    principal: Principal = Depends(route_permission(Permission.CSV_UPLOAD)),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> dict:
    return success({"view": "import", "visible": await _visible(evaluator, principal)})


@router.get("/admin")
async def admin_panel(
    principal: Principal = Depends(route_permission(Permission.ADMIN_PANEL)),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> dict:
    return success({"view": "admin", "visible": await _visible(evaluator, principal)})


@router.get("/admin/users")
async def admin_users_view(
    principal: Principal = Depends(route_permission(Permission.USER_MANAGE)),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> dict:
    return success({"view": "admin_users", "visible": await _visible(evaluator, principal)})


@router.get("/me/permissions")
async def my_permissions(
    principal: Principal | None = Depends(get_principal),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> dict:
    role, granted = await evaluator.permissions_for(principal)
    return success(
        {
            "role": None if isinstance(role, NoRole) else role.value,
            "permissions": sorted(p.value for p in granted),
        }
    )
