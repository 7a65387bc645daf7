from __future__ import annotations

from typing import Iterable

from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.errors import PermissionDeniedError
from tenant_rbac.rbac.permissions import (
    get_role_permissions,
    role_has_all_permissions,
    role_has_any_permission,
    role_has_permission,
)
from tenant_rbac.rbac.resolver import RoleResolver
from tenant_rbac.rbac.types import NoRole, Permission, ResolvedRole, Role

log = get_logger(__name__)


def _pid(principal: Principal | None) -> str:
    return principal.user_id if principal else "anonymous"


class PermissionEvaluator:
    """
    Permission queries for a principal.

    Each call resolves the role again; roles may change between requests so
    nothing is cached here. `require*` raise `PermissionDeniedError` and are
    meant to be the first statement of every guarded operation.
    """

    def __init__(self, resolver: RoleResolver):
        self._resolver = resolver

    @property
    def resolver(self) -> RoleResolver:
        return self._resolver

    async def has_permission(self, principal: Principal | None, permission: Permission) -> bool:
        role = await self._resolver.resolve_role(principal)
        return role_has_permission(role, permission)

    async def has_all(self, principal: Principal | None, permissions: Iterable[Permission]) -> bool:
        role = await self._resolver.resolve_role(principal)
        return role_has_all_permissions(role, list(permissions))

    async def has_any(self, principal: Principal | None, permissions: Iterable[Permission]) -> bool:
        role = await self._resolver.resolve_role(principal)
        return role_has_any_permission(role, list(permissions))

    async def permissions_for(self, principal: Principal | None) -> tuple[ResolvedRole, frozenset[Permission]]:
        role = await self._resolver.resolve_role(principal)
        return role, get_role_permissions(role)

    async def require(self, principal: Principal | None, permission: Permission) -> Role:
        return await self.require_all(principal, [permission])

    async def require_all(self, principal: Principal | None, permissions: Iterable[Permission]) -> Role:
        wanted = list(permissions)
        role = await self._resolver.resolve_role(principal)
        if isinstance(role, NoRole) or not role_has_all_permissions(role, wanted):
            log.warning(
                "rbac.require.denied principal=%s role=%r permissions=%s",
                _pid(principal),
                role,
                ",".join(p.value for p in wanted),
            )
            raise PermissionDeniedError()
        return role

    async def require_any(self, principal: Principal | None, permissions: Iterable[Permission]) -> Role:
        wanted = list(permissions)
        role = await self._resolver.resolve_role(principal)
        if isinstance(role, NoRole) or not role_has_any_permission(role, wanted):
            log.warning(
                "rbac.require_any.denied principal=%s role=%r permissions=%s",
                _pid(principal),
                role,
                ",".join(p.value for p in wanted),
            )
            raise PermissionDeniedError()
        return role
