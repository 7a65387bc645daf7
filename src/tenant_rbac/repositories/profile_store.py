"""
Tenant profile store contract.

The RBAC core only reads through `get_*`/`list_*`/`count_admins`. Writes are
reached exclusively through the member service (and `ensure_profile`, which
owns creation-on-first-access). Implementations must serialize the
count-then-write units (`update_role_guarded`, `reserve_removal`) per company.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from tenant_rbac.domain.entities.member import Company, Profile
from tenant_rbac.rbac.types import Role


class StoreError(Exception):
    """Storage-level failure. Text is for logs only."""


class TenantProfileStore(ABC):
    @abstractmethod
    async def get_profile(self, principal_id: str) -> Profile | None:
        ...

    @abstractmethod
    async def get_profile_by_id(self, profile_id: str) -> Profile | None:
        ...

    @abstractmethod
    async def get_company(self, company_id: str) -> Company | None:
        ...

    @abstractmethod
    async def ensure_profile(self, principal_id: str, email: str | None) -> tuple[Profile, Company]:
        ...

    @abstractmethod
    async def insert_profile(self, principal_id: str, company_id: str, role: Role) -> Profile:
        ...

    @abstractmethod
    async def list_profiles_by_company(self, company_id: str) -> list[Profile]:
        ...

    @abstractmethod
    async def count_admins(self, company_id: str, exclude_principal_id: str | None = None) -> int:
        ...

    @abstractmethod
    async def update_role_guarded(self, company_id: str, profile_id: str, new_role: Role) -> bool:
        """
        Apply a role change. Returns False, without writing, when it would
        leave the company with no admin.
        """

    @abstractmethod
    async def reserve_removal(self, company_id: str, principal_id: str) -> bool:
        """
        Mark a profile as pending removal. Returns False, without writing,
        when it would leave the company with no admin.
        """

    @abstractmethod
    async def release_removal(self, company_id: str, principal_id: str) -> None:
        ...
