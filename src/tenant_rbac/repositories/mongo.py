from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from tenant_rbac.configs.settings import Settings
from tenant_rbac.configs.logging_config import get_logger

log = get_logger(__name__)


def get_mongo_client(settings: Settings) -> AsyncIOMotorClient:
    log.info("mongo.client.create transactions=%s", settings.mongo_transactions)
    return AsyncIOMotorClient(settings.mongo_uri, tz_aware=True)


def get_mongo_db(client: AsyncIOMotorClient, settings: Settings) -> AsyncIOMotorDatabase:
    log.info("mongo.db.select db=%s", settings.mongo_db)
    return client[settings.mongo_db]


_SINGLE_PROCESS_ENVIRONMENTS = frozenset({"development", "test"})


def check_guard_settings(settings: Settings) -> None:
    """
    Refuse to run without transactions outside development.

    Without them the last-admin guard only serializes requests inside one
    worker process, which multi-worker deployments do not satisfy.
    """
    if settings.mongo_transactions:
        return
    if settings.ENVIRONMENT.lower() not in _SINGLE_PROCESS_ENVIRONMENTS:
        log.error(
            "mongo.transactions_disabled env=%s last-admin guard would not hold across workers",
            settings.ENVIRONMENT,
        )
        raise RuntimeError("mongo_transactions must be enabled outside development")
    log.warning("mongo.transactions_disabled env=%s guard is single-process only", settings.ENVIRONMENT)
