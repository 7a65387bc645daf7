"""
Roles and permissions.

Single source of truth for the role and permission tags of the system.

`Role` only has the two storable tags. The absence of a role (no session, no
profile, or a tag we do not recognise) is the `NO_ROLE` singleton, never
`None` and never a default role. Call sites branch on
`isinstance(role, NoRole)` before touching the permission table.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class NoRole:
    """Total denial. Falsy, so `if not role` also reads as denied."""

    _instance: "NoRole | None" = None

    def __new__(cls) -> "NoRole":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_ROLE"


NO_ROLE = NoRole()

ResolvedRole = Union[Role, NoRole]


class Permission(str, Enum):
    DASHBOARD_VIEW = "dashboard:view"

    FINANCIAL_DATA_VIEW = "financial_data:view"
    FINANCIAL_DATA_CREATE = "financial_data:create"
    FINANCIAL_DATA_UPDATE = "financial_data:update"
    FINANCIAL_DATA_DELETE = "financial_data:delete"

    CSV_UPLOAD = "csv:upload"

    AI_QUERY = "ai:query"
    AI_ACCESS = "ai:access"

    ADMIN_PANEL = "admin:panel"
    USER_MANAGE = "user:manage"


ALL_PERMISSIONS: frozenset[Permission] = frozenset(Permission)


def parse_role(value: Any) -> ResolvedRole:
    """
    Map a stored value to a Role.

    Exact tags only: no trimming, no case folding, no default.
    """
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        try:
            return Role(value)
        except ValueError:
            return NO_ROLE
    return NO_ROLE


def parse_role_tag(value: Any) -> Role | None:
    """Input-side variant used by validators; `None` means invalid."""
    role = parse_role(value)
    return None if isinstance(role, NoRole) else role
