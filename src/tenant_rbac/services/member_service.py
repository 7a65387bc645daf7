from __future__ import annotations

import re

from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.configs.settings import Settings
from tenant_rbac.domain.entities.member import ActionResult, AuditRecord, MemberRow, Profile
from tenant_rbac.errors import (
    ConflictError,
    InvariantViolationError,
    NotFoundError,
    TenantIsolationError,
    UpstreamError,
    ValidationError,
)
from tenant_rbac.rbac.evaluator import PermissionEvaluator
from tenant_rbac.rbac.guards import action_guard
from tenant_rbac.rbac.types import Permission, Role, parse_role_tag
from tenant_rbac.repositories.profile_store import StoreError, TenantProfileStore
from tenant_rbac.services.audit import AuditTrail
from tenant_rbac.services.member_cache import MemberListCache
from tenant_rbac.utils.time_utils import utc_now
from tenant_rbac.webclient.identity_client import (
    IdentityConflict,
    IdentityProviderClient,
    IdentityProviderError,
)

log = get_logger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

LAST_ADMIN_DEMOTE = "cannot demote the last administrator"
LAST_ADMIN_REMOVE = "cannot remove the last administrator"
SELF_REMOVAL = "you cannot remove your own account"


def validate_email(email: str) -> str:
    email = (email or "").strip()
    if not email:
        raise ValidationError("email is required", field="email")
    if not EMAIL_RE.match(email):
        raise ValidationError("email is not a valid address", field="email")
    return email.lower()


def validate_credential(credential: str, min_length: int) -> str:
    if not credential:
        raise ValidationError("password is required", field="password")
    if len(credential) < min_length:
        raise ValidationError(f"password must be at least {min_length} characters", field="password")
    return credential


def validate_role(value: str) -> Role:
    role = parse_role_tag(value)
    if role is None:
        raise ValidationError("role must be 'admin' or 'user'", field="role")
    return role


class MemberService:
    """
    Tenant-scoped member management.

    The only sanctioned way to create, re-role or remove members. Each
    operation passes the USER_MANAGE action guard first, then its own
    validation pipeline; any failed stage aborts before the single
    persistence call.
    """

    def __init__(
        self,
        evaluator: PermissionEvaluator,
        store: TenantProfileStore,
        identity: IdentityProviderClient,
        audit: AuditTrail,
        cache: MemberListCache,
        settings: Settings,
    ):
        self._evaluator = evaluator
        self._store = store
        self._identity = identity
        self._audit = audit
        self._cache = cache
        self._settings = settings

    async def _caller_profile(self, principal: Principal) -> Profile:
        try:
            profile = await self._store.get_profile(principal.user_id)
        except StoreError as exc:
            log.error("member.caller_profile.store_failed principal=%s error=%s", principal.user_id, exc)
            raise UpstreamError() from exc
        if profile is None:
            raise NotFoundError("caller has no company")
        return profile

    def _check_same_tenant(self, caller: Profile, target: Profile, op: str) -> None:
        if target.company_id != caller.company_id:
            log.warning(
                "member.%s.tenant_isolation actor=%s actor_company=%s target_profile=%s target_company=%s",
                op,
                caller.principal_id,
                caller.company_id,
                target.id,
                target.company_id,
            )
            raise TenantIsolationError()

    async def _finish(self, rec: AuditRecord) -> None:
        await self._audit.record(rec)
        if rec.changed:
            await self._cache.invalidate(rec.company_id)

    @action_guard(Permission.USER_MANAGE)
    async def list_members(self, principal: Principal) -> list[MemberRow]:
        caller = await self._caller_profile(principal)
        cached = await self._cache.get(caller.company_id)
        if cached is not None:
            log.info("member.list cache_hit company_id=%s", caller.company_id)
            return cached

        try:
            profiles = await self._store.list_profiles_by_company(caller.company_id)
        except StoreError as exc:
            log.error("member.list.store_failed company_id=%s error=%s", caller.company_id, exc)
            raise UpstreamError() from exc
        try:
            identities = await self._identity.list_identities()
        except IdentityProviderError as exc:
            raise UpstreamError() from exc

        emails = {i.principal_id: i.email for i in identities}
        rows = [
            MemberRow(
                profile_id=p.id,
                principal_id=p.principal_id,
                email=emails.get(p.principal_id) or "N/A",
                role=p.role,
                created_at=p.created_at,
            )
            for p in profiles
        ]
        await self._cache.set(caller.company_id, rows)
        log.info("member.list company_id=%s returned=%s", caller.company_id, len(rows))
        return rows

    @action_guard(Permission.USER_MANAGE)
    async def create_member(
        self,
        principal: Principal,
        email: str,
        credential: str,
        role: str = Role.USER.value,
    ) -> ActionResult:
        email = validate_email(email)
        credential = validate_credential(credential, self._settings.min_credential_length)
        new_role = validate_role(role)
        caller = await self._caller_profile(principal)

        log.info("member.create.start actor=%s company_id=%s role=%s", caller.principal_id, caller.company_id, new_role.value)
        try:
            new_principal = await self._identity.create_identity(email, credential)
        except IdentityConflict as exc:
            raise ConflictError("a user with this email already exists") from exc
        except IdentityProviderError as exc:
            raise UpstreamError() from exc

        # Two systems, no shared transaction: between the identity creation
        # above and the profile insert below the identity exists without a
        # profile. If the insert fails the identity is deleted again.
        try:
            profile = await self._store.insert_profile(new_principal, caller.company_id, new_role)
        except StoreError as exc:
            log.error(
                "member.create.profile_failed new_principal=%s company_id=%s error=%s",
                new_principal,
                caller.company_id,
                exc,
            )
            try:
                await self._identity.delete_identity(new_principal)
            except IdentityProviderError as cleanup_exc:
                log.error(
                    "member.create.compensation_failed orphan_principal=%s error=%s",
                    new_principal,
                    cleanup_exc,
                    exc_info=True,
                )
            raise UpstreamError("could not create the member profile, please try again") from exc

        await self._finish(
            AuditRecord(
                action="create",
                actor=caller.principal_id,
                target=new_principal,
                role=new_role.value,
                company_id=caller.company_id,
                timestamp=utc_now(),
            )
        )
        return ActionResult(
            success=True,
            message=f"user {email} created with role {new_role.value}",
            data={"profile_id": profile.id, "principal_id": new_principal},
        )

    @action_guard(Permission.USER_MANAGE)
    async def update_role(self, principal: Principal, profile_id: str, new_role: str) -> ActionResult:
        role = validate_role(new_role)
        if not profile_id:
            raise ValidationError("profile id is required", field="profile_id")

        try:
            target = await self._store.get_profile_by_id(profile_id)
        except StoreError as exc:
            raise UpstreamError() from exc
        if target is None or target.pending_removal:
            raise NotFoundError("member not found")

        caller = await self._caller_profile(principal)
        self._check_same_tenant(caller, target, "update_role")

        if target.role == role.value:
            await self._finish(
                AuditRecord(
                    action="update_role",
                    actor=caller.principal_id,
                    target=target.principal_id,
                    role=role.value,
                    previous_role=target.role,
                    company_id=caller.company_id,
                    changed=False,
                    timestamp=utc_now(),
                )
            )
            return ActionResult(success=True, message=f"role already {role.value}")

        # The store re-counts the other admins and writes in one serialized
        # unit; this covers self-demotion and concurrent cross-demotions.
        try:
            applied = await self._store.update_role_guarded(caller.company_id, target.id, role)
        except StoreError as exc:
            log.error("member.update_role.store_failed profile_id=%s error=%s", target.id, exc)
            raise UpstreamError() from exc
        if not applied:
            log.warning(
                "member.update_role.last_admin actor=%s target=%s company_id=%s",
                caller.principal_id,
                target.principal_id,
                caller.company_id,
            )
            raise InvariantViolationError(LAST_ADMIN_DEMOTE, code="last_admin")

        await self._finish(
            AuditRecord(
                action="update_role",
                actor=caller.principal_id,
                target=target.principal_id,
                role=role.value,
                previous_role=target.role,
                company_id=caller.company_id,
                timestamp=utc_now(),
            )
        )
        return ActionResult(success=True, message=f"role updated to {role.value}")

    @action_guard(Permission.USER_MANAGE)
    async def remove_member(self, principal: Principal, target_principal_id: str) -> ActionResult:
        if not target_principal_id:
            raise ValidationError("user id is required", field="user_id")

        try:
            target = await self._store.get_profile(target_principal_id)
        except StoreError as exc:
            raise UpstreamError() from exc
        if target is None or target.pending_removal:
            raise NotFoundError("member not found")

        caller = await self._caller_profile(principal)
        self._check_same_tenant(caller, target, "remove")

        if target.principal_id == caller.principal_id:
            log.warning("member.remove.self actor=%s", caller.principal_id)
            raise InvariantViolationError(SELF_REMOVAL, code="self_removal")

        try:
            reserved = await self._store.reserve_removal(caller.company_id, target.principal_id)
        except StoreError as exc:
            log.error("member.remove.reserve_failed target=%s error=%s", target.principal_id, exc)
            raise UpstreamError() from exc
        if not reserved:
            log.warning(
                "member.remove.last_admin actor=%s target=%s company_id=%s",
                caller.principal_id,
                target.principal_id,
                caller.company_id,
            )
            raise InvariantViolationError(LAST_ADMIN_REMOVE, code="last_admin")

        # Deleting the identity cascades to the profile at the storage layer.
        try:
            await self._identity.delete_identity(target.principal_id)
        except IdentityProviderError as exc:
            try:
                await self._store.release_removal(caller.company_id, target.principal_id)
            except StoreError as cleanup_exc:
                log.error(
                    "member.remove.compensation_failed target=%s error=%s",
                    target.principal_id,
                    cleanup_exc,
                    exc_info=True,
                )
            raise UpstreamError() from exc

        await self._finish(
            AuditRecord(
                action="remove",
                actor=caller.principal_id,
                target=target.principal_id,
                previous_role=target.role,
                company_id=caller.company_id,
                timestamp=utc_now(),
            )
        )
        return ActionResult(success=True, message="user removed")
