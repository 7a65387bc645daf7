from __future__ import annotations

import json

import redis.asyncio as redis
from pydantic import TypeAdapter, ValidationError
from redis.exceptions import RedisError

from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.domain.entities.member import MemberRow

log = get_logger(__name__)

_rows = TypeAdapter(list[MemberRow])


def cache_key(company_id: str) -> str:
    return f"rbac:members:{company_id}"


class MemberListCache:
    """Cached member list per company. Misses and Redis errors fall through."""

    def __init__(self, redis_client: redis.Redis | None, ttl_seconds: int = 300):
        self._redis = redis_client
        self._ttl = ttl_seconds

    async def get(self, company_id: str) -> list[MemberRow] | None:
        if self._redis is None:
            return None
        try:
            raw = await self._redis.get(cache_key(company_id))
        except RedisError as exc:
            log.warning("members.cache.get_failed company_id=%s error=%s", company_id, exc)
            return None
        if not raw:
            return None
        try:
            return _rows.validate_json(raw)
        except ValidationError as exc:
            log.warning("members.cache.corrupt company_id=%s errors=%s", company_id, exc.error_count())
            await self.invalidate(company_id)
            return None

    async def set(self, company_id: str, rows: list[MemberRow]) -> None:
        if self._redis is None:
            return
        payload = json.dumps([r.model_dump(mode="json") for r in rows])
        try:
            await self._redis.setex(cache_key(company_id), self._ttl, payload)
        except RedisError as exc:
            log.warning("members.cache.set_failed company_id=%s error=%s", company_id, exc)

    async def invalidate(self, company_id: str) -> None:
        if self._redis is None:
            return
        log.info("members.cache.invalidate company_id=%s", company_id)
        try:
            await self._redis.delete(cache_key(company_id))
        except RedisError as exc:
            log.warning("members.cache.invalidate_failed company_id=%s error=%s", company_id, exc)
