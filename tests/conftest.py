from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest

from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.settings import Settings
from tenant_rbac.domain.entities.member import Company, Profile
from tenant_rbac.errors import NotFoundError
from tenant_rbac.rbac.evaluator import PermissionEvaluator
from tenant_rbac.rbac.resolver import RoleResolver
from tenant_rbac.rbac.types import Role
from tenant_rbac.repositories.profile_store import StoreError, TenantProfileStore
from tenant_rbac.services.audit import AuditTrail
from tenant_rbac.services.financial_service import FinancialService
from tenant_rbac.services.import_service import ImportService
from tenant_rbac.services.member_cache import MemberListCache
from tenant_rbac.services.member_service import MemberService
from tenant_rbac.webclient.identity_client import Identity, IdentityConflict, IdentityProviderError

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeProfileStore(TenantProfileStore):
    """In-memory store; every write is appended to `writes`."""

    def __init__(self) -> None:
        self.companies: dict[str, Company] = {}
        self.profiles: dict[str, Profile] = {}
        self.writes: list[tuple[str, Any]] = []
        self.reads = 0
        self.fail_insert = False
        self.fail_release = False
        self._lock = asyncio.Lock()
        self._tick = 0

    # seeding helpers, not part of the contract
    def add_company(self, name: str, owner_id: str) -> Company:
        company = Company(id=str(uuid.uuid4()), name=name, owner_id=owner_id, created_at=_EPOCH)
        self.companies[company.id] = company
        return company

    def add_profile(self, principal_id: str, company_id: str, role: str) -> Profile:
        self._tick += 1
        profile = Profile(
            id=str(uuid.uuid4()),
            principal_id=principal_id,
            company_id=company_id,
            role=role,
            created_at=_EPOCH + timedelta(seconds=self._tick),
        )
        self.profiles[profile.id] = profile
        return profile

    def by_principal(self, principal_id: str) -> Profile | None:
        for p in self.profiles.values():
            if p.principal_id == principal_id:
                return p
        return None

    def drop_principal(self, principal_id: str) -> None:
        """Storage-level cascade of an identity deletion."""
        p = self.by_principal(principal_id)
        if p is not None:
            del self.profiles[p.id]

    def _replace(self, profile: Profile, **changes: Any) -> None:
        self.profiles[profile.id] = profile.model_copy(update=changes)

    # contract
    async def get_profile(self, principal_id: str) -> Profile | None:
        self.reads += 1
        return self.by_principal(principal_id)

    async def get_profile_by_id(self, profile_id: str) -> Profile | None:
        self.reads += 1
        return self.profiles.get(profile_id)

    async def get_company(self, company_id: str) -> Company | None:
        return self.companies.get(company_id)

    async def ensure_profile(self, principal_id: str, email: str | None) -> tuple[Profile, Company]:
        existing = self.by_principal(principal_id)
        if existing:
            return existing, self.companies[existing.company_id]
        company = self.add_company(f"{email or 'user'}'s company", principal_id)
        profile = self.add_profile(principal_id, company.id, Role.USER.value)
        self.writes.append(("ensure_profile", principal_id))
        return profile, company

    async def insert_profile(self, principal_id: str, company_id: str, role: Role) -> Profile:
        if self.fail_insert:
            raise StoreError("insert failed")
        self.writes.append(("insert_profile", principal_id))
        return self.add_profile(principal_id, company_id, role.value)

    async def list_profiles_by_company(self, company_id: str) -> list[Profile]:
        rows = [p for p in self.profiles.values() if p.company_id == company_id and not p.pending_removal]
        return sorted(rows, key=lambda p: p.created_at, reverse=True)

    async def count_admins(self, company_id: str, exclude_principal_id: str | None = None) -> int:
        return sum(
            1
            for p in self.profiles.values()
            if p.company_id == company_id
            and p.role == Role.ADMIN.value
            and not p.pending_removal
            and p.principal_id != exclude_principal_id
        )

    async def update_role_guarded(self, company_id: str, profile_id: str, new_role: Role) -> bool:
        async with self._lock:
            target = self.profiles.get(profile_id)
            if target is None or target.company_id != company_id:
                raise NotFoundError("member not found")
            if target.role == Role.ADMIN.value and new_role is not Role.ADMIN:
                others = await self.count_admins(company_id, target.principal_id)
                # yield so that an unserialized implementation would interleave here
                await asyncio.sleep(0)
                if others == 0:
                    return False
            self._replace(self.profiles[profile_id], role=new_role.value)
            self.writes.append(("update_role", profile_id))
            return True

    async def reserve_removal(self, company_id: str, principal_id: str) -> bool:
        async with self._lock:
            target = self.by_principal(principal_id)
            if target is None or target.company_id != company_id or target.pending_removal:
                raise NotFoundError("member not found")
            if target.role == Role.ADMIN.value:
                others = await self.count_admins(company_id, principal_id)
                await asyncio.sleep(0)
                if others == 0:
                    return False
            self._replace(target, pending_removal=True)
            self.writes.append(("reserve_removal", principal_id))
            return True

    async def release_removal(self, company_id: str, principal_id: str) -> None:
        if self.fail_release:
            raise StoreError("release failed")
        target = self.by_principal(principal_id)
        if target is not None:
            self._replace(target, pending_removal=False)
        self.writes.append(("release_removal", principal_id))


class FakeIdentityProvider:
    def __init__(self, store: FakeProfileStore) -> None:
        self._store = store
        self.identities: dict[str, str] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_create = False
        self.fail_delete = False

    def add(self, principal_id: str, email: str) -> None:
        self.identities[principal_id] = email

    async def create_identity(self, email: str, credential: str) -> str:
        self.calls.append(("create", email))
        if self.fail_create:
            raise IdentityProviderError("boom")
        if email.strip().lower() in self.identities.values():
            raise IdentityConflict("email already registered")
        principal_id = str(uuid.uuid4())
        self.identities[principal_id] = email.strip().lower()
        return principal_id

    async def delete_identity(self, principal_id: str) -> None:
        self.calls.append(("delete", principal_id))
        if self.fail_delete:
            raise IdentityProviderError("boom")
        self.identities.pop(principal_id, None)
        self._store.drop_principal(principal_id)

    async def list_identities(self) -> list[Identity]:
        self.calls.append(("list", None))
        return [Identity(principal_id=k, email=v) for k, v in self.identities.items()]


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.streams: dict[str, list[dict[str, str]]] = {}

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.values[key] = value

    async def delete(self, key: str) -> None:
        self.values.pop(key, None)

    async def xadd(self, stream: str, fields: dict[str, str]) -> str:
        self.streams.setdefault(stream, []).append(fields)
        return f"{len(self.streams[stream])}-0"


class FakeRecordRepository:
    def __init__(self) -> None:
        self.sales: list[tuple[str, Any]] = []
        self.expenses: list[tuple[str, Any]] = []
        self.fail = False

    async def insert_sales(self, company_id: str, records: list) -> int:
        if self.fail:
            raise StoreError("insert failed")
        self.sales.extend((company_id, r) for r in records)
        return len(records)

    async def insert_expenses(self, company_id: str, records: list) -> int:
        if self.fail:
            raise StoreError("insert failed")
        self.expenses.extend((company_id, r) for r in records)
        return len(records)

    async def list_sales(self, company_id: str, start=None, end=None) -> list:
        if self.fail:
            raise StoreError("read failed")
        rows = [r for c, r in self.sales if c == company_id and _within(r.sale_date, start, end)]
        return sorted(rows, key=lambda r: r.sale_date)

    async def list_expenses(self, company_id: str, start=None, end=None) -> list:
        if self.fail:
            raise StoreError("read failed")
        rows = [r for c, r in self.expenses if c == company_id and _within(r.expense_date, start, end)]
        return sorted(rows, key=lambda r: r.expense_date)


def _within(day: date, start: date | None, end: date | None) -> bool:
    return (start is None or day >= start) and (end is None or day <= end)


@dataclass
class Tenants:
    """Company C: admins a1, a2 and user u1. Company D: admin b1."""

    c: Company
    d: Company
    a1: Principal
    a2: Principal
    u1: Principal
    b1: Principal
    outsider: Principal
    profiles: dict[str, Profile] = field(default_factory=dict)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, redis_stream_audit="test:audit")


@pytest.fixture
def store() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture
def identity(store: FakeProfileStore) -> FakeIdentityProvider:
    return FakeIdentityProvider(store)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def records() -> FakeRecordRepository:
    return FakeRecordRepository()


@pytest.fixture
def evaluator(store: FakeProfileStore) -> PermissionEvaluator:
    return PermissionEvaluator(RoleResolver(store))


@pytest.fixture
def audit(fake_redis: FakeRedis, settings: Settings) -> AuditTrail:
    return AuditTrail(fake_redis, settings)


@pytest.fixture
def member_service(evaluator, store, identity, audit, fake_redis, settings) -> MemberService:
    return MemberService(
        evaluator=evaluator,
        store=store,
        identity=identity,
        audit=audit,
        cache=MemberListCache(fake_redis, settings.member_cache_ttl_seconds),
        settings=settings,
    )


@pytest.fixture
def import_service(evaluator, store, records, audit) -> ImportService:
    return ImportService(evaluator=evaluator, store=store, records=records, audit=audit)


@pytest.fixture
def today() -> date:
    return date(2024, 3, 15)


@pytest.fixture
def financial_service(evaluator, store, records, today) -> FinancialService:
    return FinancialService(evaluator=evaluator, store=store, records=records, today=lambda: today)


@pytest.fixture
def tenants(store: FakeProfileStore, identity: FakeIdentityProvider) -> Tenants:
    c = store.add_company("C", owner_id="a1")
    d = store.add_company("D", owner_id="b1")
    t = Tenants(
        c=c,
        d=d,
        a1=Principal("a1", "a1@c.com"),
        a2=Principal("a2", "a2@c.com"),
        u1=Principal("u1", "u1@c.com"),
        b1=Principal("b1", "b1@d.com"),
        outsider=Principal("nobody", "nobody@x.com"),
    )
    for principal, company, role in (
        (t.a1, c, "admin"),
        (t.a2, c, "admin"),
        (t.u1, c, "user"),
        (t.b1, d, "admin"),
    ):
        t.profiles[principal.user_id] = store.add_profile(principal.user_id, company.id, role)
        identity.add(principal.user_id, principal.email)
    identity.add(t.outsider.user_id, t.outsider.email)
    return t
