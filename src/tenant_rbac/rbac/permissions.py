"""
Role -> permission mapping.

Built once at import time and exposed read-only; nothing mutates or derives it
at runtime, so concurrent readers need no locking.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from tenant_rbac.rbac.types import NoRole, Permission, ResolvedRole, Role

ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = MappingProxyType(
    {
        Role.ADMIN: frozenset(
            {
                Permission.DASHBOARD_VIEW,
                Permission.FINANCIAL_DATA_VIEW,
                Permission.FINANCIAL_DATA_CREATE,
                Permission.FINANCIAL_DATA_UPDATE,
                Permission.FINANCIAL_DATA_DELETE,
                Permission.CSV_UPLOAD,
                Permission.AI_QUERY,
                Permission.AI_ACCESS,
                Permission.ADMIN_PANEL,
                Permission.USER_MANAGE,
            }
        ),
        Role.USER: frozenset(
            {
                Permission.DASHBOARD_VIEW,
                Permission.FINANCIAL_DATA_VIEW,
                Permission.CSV_UPLOAD,
                Permission.AI_QUERY,
                Permission.AI_ACCESS,
            }
        ),
    }
)


def get_role_permissions(role: ResolvedRole) -> frozenset[Permission]:
    if isinstance(role, NoRole):
        return frozenset()
    return ROLE_PERMISSIONS[role]


def role_has_permission(role: ResolvedRole, permission: Permission) -> bool:
    if isinstance(role, NoRole):
        return False
    return permission in ROLE_PERMISSIONS[role]


def role_has_all_permissions(role: ResolvedRole, permissions: Iterable[Permission]) -> bool:
    if isinstance(role, NoRole):
        return False
    return all(role_has_permission(role, p) for p in permissions)


def role_has_any_permission(role: ResolvedRole, permissions: Iterable[Permission]) -> bool:
    if isinstance(role, NoRole):
        return False
    return any(role_has_permission(role, p) for p in permissions)
