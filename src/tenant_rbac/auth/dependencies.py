from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from tenant_rbac.auth.jwt import decode_token
from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.configs.settings import get_settings
from tenant_rbac.errors import AuthError, RedirectRequired
from tenant_rbac.rbac.evaluator import PermissionEvaluator
from tenant_rbac.rbac.guards import RouteGuard
from tenant_rbac.rbac.types import Permission
from tenant_rbac.services.financial_service import FinancialService
from tenant_rbac.services.import_service import ImportService
from tenant_rbac.services.member_service import MemberService

log = get_logger(__name__)


def _bearer_token(value: str | None) -> str:
    if not value:
        raise AuthError("missing authorization header")
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("invalid authorization header")
    return token.strip()


async def get_principal(request: Request) -> Principal | None:
    """
    Resolve the session to a principal, or None when there is no valid
    session. None is handled downstream as "no role".
    """
    header = request.headers.get("authorization")
    if not header:
        return None
    try:
        claims = decode_token(_bearer_token(header), get_settings())
    except AuthError as exc:
        log.info("auth.session_rejected reason=%s", exc.message)
        return None

    user_id = claims.get("sub")
    if not user_id:
        log.info("auth.token_missing_sub")
        return None
    return Principal(user_id=str(user_id), email=claims.get("email"))


async def require_principal(principal: Principal | None = Depends(get_principal)) -> Principal:
    if principal is None:
        raise AuthError()
    return principal


def get_evaluator(request: Request) -> PermissionEvaluator:
    return request.app.state.evaluator


def get_route_guard(request: Request) -> RouteGuard:
    return request.app.state.route_guard


def get_member_service(request: Request) -> MemberService:
    return request.app.state.member_service


def get_import_service(request: Request) -> ImportService:
    return request.app.state.import_service


def get_financial_service(request: Request) -> FinancialService:
    return request.app.state.financial_service


def route_permission(permission: Permission, redirect_to: str | None = None) -> Callable:
    """
    Dependency factory for views: anonymous callers go to the login page,
    callers without the permission go to the safe default view.
    """

    async def _guard(
        principal: Principal | None = Depends(get_principal),
        guard: RouteGuard = Depends(get_route_guard),
    ) -> Principal:
        if principal is None:
            raise RedirectRequired(get_settings().login_path)
        await guard.guard_route(principal, permission, redirect_to=redirect_to)
        return principal

    return _guard
