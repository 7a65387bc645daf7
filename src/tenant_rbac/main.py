from __future__ import annotations

import time
from typing import Any

import httpx
import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from tenant_rbac.configs.logging_config import get_logger, setup_logging
from tenant_rbac.configs.settings import Settings, get_settings
from tenant_rbac.errors import AppError, RedirectRequired
from tenant_rbac.rbac.evaluator import PermissionEvaluator
from tenant_rbac.rbac.guards import RouteGuard
from tenant_rbac.rbac.resolver import RoleResolver
from tenant_rbac.repositories.mongo import check_guard_settings, get_mongo_client, get_mongo_db
from tenant_rbac.repositories.profile_repository import ProfileRepository
from tenant_rbac.repositories.profile_store import TenantProfileStore
from tenant_rbac.repositories.record_repository import RecordRepository
from tenant_rbac.repositories.redis_client import redis_client
from tenant_rbac.routers.dashboard_router import router as dashboard_router
from tenant_rbac.routers.health_router import router as health_router
from tenant_rbac.routers.import_router import router as import_router
from tenant_rbac.routers.member_router import router as member_router
from tenant_rbac.routers.view_router import router as view_router
from tenant_rbac.services.audit import AuditTrail
from tenant_rbac.services.financial_service import FinancialService
from tenant_rbac.services.import_service import ImportService
from tenant_rbac.services.member_cache import MemberListCache
from tenant_rbac.services.member_service import MemberService
from tenant_rbac.utils.response import failure
from tenant_rbac.webclient.identity_client import IdentityProviderClient

log = get_logger(__name__)


def wire_services(
    state: Any,
    *,
    settings: Settings,
    store: TenantProfileStore,
    records: RecordRepository,
    identity: IdentityProviderClient,
    redis_conn: redis.Redis | None,
) -> None:
    """Build the RBAC core on top of the given collaborators."""
    resolver = RoleResolver(store)
    evaluator = PermissionEvaluator(resolver)
    audit = AuditTrail(redis_conn, settings)

    state.settings = settings
    state.profile_store = store
    state.evaluator = evaluator
    state.route_guard = RouteGuard(evaluator, settings.safe_redirect_path)
    state.member_service = MemberService(
        evaluator=evaluator,
        store=store,
        identity=identity,
        audit=audit,
        cache=MemberListCache(redis_conn, settings.member_cache_ttl_seconds),
        settings=settings,
    )
    state.import_service = ImportService(
        evaluator=evaluator,
        store=store,
        records=records,
        audit=audit,
    )
    state.financial_service = FinancialService(
        evaluator=evaluator,
        store=store,
        records=records,
    )


def create_app() -> FastAPI:
    app = FastAPI(title="tenant_rbac", version="0.1.0")
    settings: Settings = get_settings()
    # Normalize CORS origins from settings (.env can provide a comma-separated string)
    raw_origins = settings.CORS_ORIGINS
    if isinstance(raw_origins, str):
        origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    elif isinstance(raw_origins, (list, tuple, set)):
        origins = list(raw_origins)
    else:
        origins = []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        start = time.perf_counter()
        method = request.method
        path = request.url.path
        request_id = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")

        log.info("request.start method=%s path=%s request_id=%s", method, path, request_id)
        response = None
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            log.info(
                "request.end method=%s path=%s status=%s request_id=%s elapsed_ms=%s",
                method,
                path,
                getattr(response, "status_code", "unknown"),
                request_id,
                elapsed_ms,
            )
        return response

    app.include_router(health_router)
    app.include_router(view_router)
    app.include_router(member_router)
    app.include_router(import_router)
    app.include_router(dashboard_router)

    @app.exception_handler(RedirectRequired)
    async def redirect_handler(_: Request, exc: RedirectRequired) -> RedirectResponse:
        return RedirectResponse(url=exc.location, status_code=exc.http_status)

    @app.exception_handler(AppError)
    async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
        log.info("request.error type=%s status=%s message=%s", type(exc).__name__, exc.http_status, exc.message)
        return JSONResponse(
            status_code=exc.http_status,
            content=failure(
                exc.message,
                field=getattr(exc, "field", None),
                code=getattr(exc, "code", None),
                retryable=getattr(exc, "retryable", None),
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error: %s", str(exc))
        return JSONResponse(status_code=500, content=failure("internal server error"))

    @app.on_event("startup")
    async def startup() -> None:
        setup_logging()
        settings: Settings = get_settings()
        check_guard_settings(settings)

        mongo_client = get_mongo_client(settings)
        mongo_db = get_mongo_db(mongo_client, settings)
        await redis_client.connect()
        app.state.mongo_client = mongo_client

        store = ProfileRepository(mongo_db, settings, client=mongo_client)
        records = RecordRepository(mongo_db, settings)
        log.info("startup.ensure_indexes begin")
        await store.ensure_indexes()
        await records.ensure_indexes()
        log.info("startup.ensure_indexes done")

        identity = IdentityProviderClient(
            base_url=settings.identity_base_url,
            service_key=settings.identity_service_key,
            client=httpx.AsyncClient(timeout=settings.identity_timeout_seconds),
        )
        app.state.identity_client = identity

        wire_services(
            app.state,
            settings=settings,
            store=store,
            records=records,
            identity=identity,
            redis_conn=redis_client.client,
        )
        log.info("startup.done service=%s env=%s", settings.SERVICE_NAME, settings.ENVIRONMENT)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        log.info("shutdown.begin")
        await redis_client.close()
        identity = getattr(app.state, "identity_client", None)
        if identity is not None:
            await identity.aclose()
        mongo_client = getattr(app.state, "mongo_client", None)
        if mongo_client is not None:
            mongo_client.close()
        log.info("shutdown.done")

    return app


app = create_app()
