from __future__ import annotations

import json

import redis.asyncio as redis
from redis.exceptions import RedisError

from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.configs.settings import Settings
from tenant_rbac.domain.entities.member import AuditRecord
from tenant_rbac.utils.time_utils import dt_to_iso

log = get_logger(__name__)


class AuditTrail:
    """
    Append-only audit of guarded mutations.

    Every record is logged; when Redis is configured it is also appended to
    the audit stream. The operation being audited has already committed, so
    a failed append is logged and swallowed.
    """

    def __init__(self, redis_client: redis.Redis | None, settings: Settings):
        self._redis = redis_client
        self._stream = settings.redis_stream_audit

    async def record(self, rec: AuditRecord) -> None:
        log.info(
            "audit.record action=%s actor=%s target=%s role=%s previous_role=%s company_id=%s changed=%s",
            rec.action,
            rec.actor,
            rec.target,
            rec.role,
            rec.previous_role,
            rec.company_id,
            rec.changed,
        )
        if self._redis is None:
            return
        fields = {
            "action": rec.action,
            "actor": rec.actor,
            "target": rec.target or "",
            "role": rec.role or "",
            "previous_role": rec.previous_role or "",
            "company_id": rec.company_id,
            "changed": "1" if rec.changed else "0",
            "detail": json.dumps(rec.detail, default=str),
            "timestamp": dt_to_iso(rec.timestamp),
        }
        try:
            await self._redis.xadd(self._stream, fields)
        except RedisError as exc:
            log.error("audit.append_failed stream=%s action=%s error=%s", self._stream, rec.action, exc)
