from __future__ import annotations

import asyncio
import uuid
import weakref
from typing import Any, Awaitable, Callable

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.configs.settings import Settings
from tenant_rbac.domain.entities.member import Company, Profile
from tenant_rbac.errors import NotFoundError
from tenant_rbac.rbac.types import Role
from tenant_rbac.repositories.profile_store import StoreError, TenantProfileStore
from tenant_rbac.utils.time_utils import utc_now

log = get_logger(__name__)

_ACTIVE = {"pending_removal": {"$ne": True}}


def _to_profile(doc: dict[str, Any]) -> Profile:
    return Profile(
        id=str(doc["_id"]),
        principal_id=doc["principal_id"],
        company_id=doc["company_id"],
        role=doc.get("role"),
        created_at=doc["created_at"],
        pending_removal=bool(doc.get("pending_removal", False)),
    )


def _to_company(doc: dict[str, Any]) -> Company:
    return Company(
        id=str(doc["_id"]),
        name=doc["name"],
        owner_id=doc["owner_id"],
        created_at=doc["created_at"],
    )


class ProfileRepository(TenantProfileStore):
    """
    MongoDB-backed tenant profile store.

    Role-changing writes that can drop the last admin run as a guarded unit.
    Inside a worker process units on one company queue on an asyncio.Lock.
    Across processes only `mongo_transactions` protects the last-admin count:
    each transaction first bumps the company's `guard_version`, so two units
    on the same company write the same document and one of them aborts with
    a write conflict instead of reading a stale count. Without transactions
    the guarantee holds for a single process only (see `check_guard_settings`).
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        settings: Settings,
        client: AsyncIOMotorClient | None = None,
    ):
        self._db = db
        self._settings = settings
        self._client = client
        self._companies = db["companies"]
        self._profiles = db["profiles"]
        # entries go away once no coroutine holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def ensure_indexes(self) -> None:
        log.info("repo.profile.ensure_indexes start")
        await self._profiles.create_index([("principal_id", 1)], unique=True)
        await self._profiles.create_index([("company_id", 1), ("role", 1)])
        await self._profiles.create_index([("company_id", 1), ("created_at", -1)])
        await self._companies.create_index([("owner_id", 1)])
        log.info("repo.profile.ensure_indexes done")

    # ----------------------------
    # Reads
    # ----------------------------

    async def get_profile(self, principal_id: str) -> Profile | None:
        log.info("repo.profile.get principal_id=%s", principal_id)
        try:
            doc = await self._profiles.find_one({"principal_id": principal_id})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return _to_profile(doc) if doc else None

    async def get_profile_by_id(self, profile_id: str) -> Profile | None:
        log.info("repo.profile.get_by_id profile_id=%s", profile_id)
        try:
            doc = await self._profiles.find_one({"_id": profile_id})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return _to_profile(doc) if doc else None

    async def get_company(self, company_id: str) -> Company | None:
        log.info("repo.company.get company_id=%s", company_id)
        try:
            doc = await self._companies.find_one({"_id": company_id})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return _to_company(doc) if doc else None

    async def list_profiles_by_company(self, company_id: str) -> list[Profile]:
        log.info("repo.profile.list company_id=%s", company_id)
        try:
            cursor = self._profiles.find({"company_id": company_id, **_ACTIVE}).sort("created_at", -1)
            docs = await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return [_to_profile(d) for d in docs]

    async def count_admins(self, company_id: str, exclude_principal_id: str | None = None) -> int:
        return await self._count_admins(company_id, exclude_principal_id, session=None)

    async def _count_admins(self, company_id: str, exclude_principal_id: str | None, session) -> int:
        q: dict[str, Any] = {"company_id": company_id, "role": Role.ADMIN.value, **_ACTIVE}
        if exclude_principal_id is not None:
            q["principal_id"] = {"$ne": exclude_principal_id}
        try:
            count = await self._profiles.count_documents(q, session=session)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        log.info(
            "repo.profile.count_admins company_id=%s exclude=%s count=%s",
            company_id,
            exclude_principal_id,
            count,
        )
        return count

    # ----------------------------
    # Writes
    # ----------------------------

    async def ensure_profile(self, principal_id: str, email: str | None) -> tuple[Profile, Company]:
        existing = await self.get_profile(principal_id)
        if existing:
            company = await self.get_company(existing.company_id)
            if company is None:
                raise StoreError(f"profile {existing.id} points to missing company {existing.company_id}")
            return existing, company

        now = utc_now()
        company_doc = {
            "_id": str(uuid.uuid4()),
            "name": f"{email or 'user'}'s company",
            "owner_id": principal_id,
            "created_at": now,
            "guard_version": 0,
        }
        log.info("repo.profile.ensure create_company principal_id=%s", principal_id)
        try:
            await self._companies.insert_one(company_doc)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

        profile_doc = {
            "_id": str(uuid.uuid4()),
            "principal_id": principal_id,
            "company_id": company_doc["_id"],
            "role": Role.USER.value,
            "created_at": now,
            "pending_removal": False,
        }
        try:
            await self._profiles.insert_one(profile_doc)
        except DuplicateKeyError:
            # Lost a first-access race: another request created the profile.
            log.info("repo.profile.ensure lost_race principal_id=%s", principal_id)
            await self._drop_company(company_doc["_id"])
            return await self.ensure_profile(principal_id, email)
        except PyMongoError as exc:
            log.error("repo.profile.ensure profile_insert_failed principal_id=%s error=%s", principal_id, exc)
            await self._drop_company(company_doc["_id"])
            raise StoreError(str(exc)) from exc

        log.info(
            "repo.profile.ensure created principal_id=%s company_id=%s",
            principal_id,
            company_doc["_id"],
        )
        return _to_profile(profile_doc), _to_company(company_doc)

    async def _drop_company(self, company_id: str) -> None:
        try:
            await self._companies.delete_one({"_id": company_id})
        except PyMongoError as exc:
            log.error("repo.company.cleanup_failed company_id=%s error=%s", company_id, exc, exc_info=True)

    async def insert_profile(self, principal_id: str, company_id: str, role: Role) -> Profile:
        log.info(
            "repo.profile.insert principal_id=%s company_id=%s role=%s",
            principal_id,
            company_id,
            role.value,
        )
        doc = {
            "_id": str(uuid.uuid4()),
            "principal_id": principal_id,
            "company_id": company_id,
            "role": role.value,
            "created_at": utc_now(),
            "pending_removal": False,
        }
        try:
            await self._profiles.insert_one(doc)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return _to_profile(doc)

    async def update_role_guarded(self, company_id: str, profile_id: str, new_role: Role) -> bool:
        async def unit(session) -> bool:
            doc = await self._profiles.find_one(
                {"_id": profile_id, "company_id": company_id}, session=session
            )
            if not doc:
                raise NotFoundError("member not found")
            if doc.get("role") == Role.ADMIN.value and new_role is not Role.ADMIN:
                others = await self._count_admins(company_id, doc["principal_id"], session)
                if others == 0:
                    log.info("repo.profile.update_role last_admin company_id=%s profile_id=%s", company_id, profile_id)
                    return False
            await self._profiles.update_one(
                {"_id": profile_id, "company_id": company_id},
                {"$set": {"role": new_role.value, "updated_at": utc_now()}},
                session=session,
            )
            log.info(
                "repo.profile.update_role company_id=%s profile_id=%s role=%s",
                company_id,
                profile_id,
                new_role.value,
            )
            return True

        return await self._guarded(company_id, unit)

    async def reserve_removal(self, company_id: str, principal_id: str) -> bool:
        async def unit(session) -> bool:
            doc = await self._profiles.find_one(
                {"principal_id": principal_id, "company_id": company_id, **_ACTIVE}, session=session
            )
            if not doc:
                raise NotFoundError("member not found")
            if doc.get("role") == Role.ADMIN.value:
                others = await self._count_admins(company_id, principal_id, session)
                if others == 0:
                    log.info("repo.profile.reserve_removal last_admin company_id=%s principal_id=%s", company_id, principal_id)
                    return False
            await self._profiles.update_one(
                {"_id": doc["_id"]},
                {"$set": {"pending_removal": True, "updated_at": utc_now()}},
                session=session,
            )
            log.info("repo.profile.reserve_removal company_id=%s principal_id=%s", company_id, principal_id)
            return True

        return await self._guarded(company_id, unit)

    async def release_removal(self, company_id: str, principal_id: str) -> None:
        log.info("repo.profile.release_removal company_id=%s principal_id=%s", company_id, principal_id)
        try:
            await self._profiles.update_one(
                {"principal_id": principal_id, "company_id": company_id},
                {"$set": {"pending_removal": False, "updated_at": utc_now()}},
            )
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    # ----------------------------
    # Guarded units
    # ----------------------------

    async def _bump_guard(self, company_id: str, session) -> None:
        await self._companies.update_one(
            {"_id": company_id}, {"$inc": {"guard_version": 1}}, session=session
        )

    def _company_lock(self, company_id: str) -> asyncio.Lock:
        lock = self._locks.get(company_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[company_id] = lock
        return lock

    async def _guarded(self, company_id: str, unit: Callable[[Any], Awaitable[bool]]) -> bool:
        """
        Run `unit` under the company lock and, when enabled, inside a
        transaction. A unit that returns False leaves the store untouched:
        the transaction, guard bump included, is aborted.
        """
        lock = self._company_lock(company_id)
        async with lock:
            try:
                if self._settings.mongo_transactions and self._client is not None:
                    async with await self._client.start_session() as session:
                        async with session.start_transaction():
                            await self._bump_guard(company_id, session)
                            applied = await unit(session)
                            if not applied:
                                await session.abort_transaction()
                            return applied
                return await unit(None)
            except PyMongoError as exc:
                raise StoreError(str(exc)) from exc
