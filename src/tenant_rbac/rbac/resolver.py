from __future__ import annotations

from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.domain.entities.member import Profile
from tenant_rbac.rbac.types import NO_ROLE, NoRole, ResolvedRole, parse_role
from tenant_rbac.repositories.profile_store import StoreError, TenantProfileStore

log = get_logger(__name__)


class RoleResolver:
    """
    Principal -> Role, read from the tenant profile on every call.

    Never creates profiles and never substitutes a default: no session, no
    profile, an unreadable store or an unknown tag all resolve to NO_ROLE.
    """

    def __init__(self, store: TenantProfileStore):
        self._store = store

    async def resolve_profile(self, principal: Principal | None) -> Profile | None:
        if principal is None:
            return None
        try:
            return await self._store.get_profile(principal.user_id)
        except StoreError as exc:
            log.error("rbac.resolve.store_failed principal=%s error=%s", principal.user_id, exc)
            return None

    async def resolve_role(self, principal: Principal | None) -> ResolvedRole:
        if principal is None:
            return NO_ROLE
        profile = await self.resolve_profile(principal)
        if profile is None:
            log.info("rbac.resolve.no_profile principal=%s", principal.user_id)
            return NO_ROLE
        role = parse_role(profile.role)
        if isinstance(role, NoRole):
            # Stored value outside the enum; do not echo it.
            log.warning("rbac.resolve.invalid_role principal=%s profile_id=%s", principal.user_id, profile.id)
        return role
