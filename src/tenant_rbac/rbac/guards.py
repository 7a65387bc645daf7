"""
Route and action guards.

The route guard is navigational only: it decides whether a view renders or
the caller is sent to a safe page. The security boundary is the action guard,
which every mutating operation applies before its first statement.
"""

from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, TypeVar

from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.errors import RedirectRequired
from tenant_rbac.rbac.evaluator import PermissionEvaluator
from tenant_rbac.rbac.types import Permission

log = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class RouteGuard:
    def __init__(self, evaluator: PermissionEvaluator, safe_redirect_path: str = "/dashboard"):
        self._evaluator = evaluator
        self._safe_redirect_path = safe_redirect_path

    async def guard_route(
        self,
        principal: Principal | None,
        permission: Permission,
        *,
        redirect_to: str | None = None,
    ) -> None:
        if not await self._evaluator.has_permission(principal, permission):
            target = redirect_to or self._safe_redirect_path
            log.info(
                "rbac.route.redirect principal=%s permission=%s to=%s",
                principal.user_id if principal else "anonymous",
                permission.value,
                target,
            )
            raise RedirectRequired(target)

    async def guard_route_any(
        self,
        principal: Principal | None,
        permissions: list[Permission],
        *,
        redirect_to: str | None = None,
    ) -> None:
        if not await self._evaluator.has_any(principal, permissions):
            target = redirect_to or self._safe_redirect_path
            log.info(
                "rbac.route.redirect principal=%s permissions=%s to=%s",
                principal.user_id if principal else "anonymous",
                ",".join(p.value for p in permissions),
                target,
            )
            raise RedirectRequired(target)


def action_guard(permission: Permission, *more: Permission) -> Callable[[F], F]:
    """
    Gate an async service method on permissions.

    The method's owner must expose `_evaluator` and take the acting principal
    as its first positional argument. The check runs before the method body,
    so a denial happens with nothing else executed.
    """
    required = [permission, *more]

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        async def wrapper(self, principal: Principal | None, *args: Any, **kwargs: Any) -> Any:
            await self._evaluator.require_all(principal, required)
            return await fn(self, principal, *args, **kwargs)

        wrapper.required_permissions = tuple(required)  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
