from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tenant_rbac.auth.dependencies import get_import_service, get_principal
from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.domain.entities.records import ImportRequest, ImportResult
from tenant_rbac.services.import_service import ImportService
from tenant_rbac.utils.response import failure, success

log = get_logger(__name__)

router = APIRouter(prefix="/api/import", tags=["import"])


def _respond(result: ImportResult):
    data = result.model_dump()
    if result.success:
        return success(data, message=result.message or "import finished")
    return JSONResponse(status_code=422, content=failure(result.message or "import failed", data=data))


@router.post("/sales")
async def import_sales(
    body: ImportRequest,
    principal: Principal | None = Depends(get_principal),
    svc: ImportService = Depends(get_import_service),
):
    log.info("import.sales.start rows=%s", len(body.rows))
    result = await svc.import_sales(principal, body.rows, body.headers)
    log.info("import.sales.done imported=%s skipped=%s", result.imported_count, result.skipped_count)
    return _respond(result)


@router.post("/expenses")
async def import_expenses(
    body: ImportRequest,
    principal: Principal | None = Depends(get_principal),
    svc: ImportService = Depends(get_import_service),
):
    log.info("import.expenses.start rows=%s", len(body.rows))
    result = await svc.import_expenses(principal, body.rows, body.headers)
    log.info("import.expenses.done imported=%s skipped=%s", result.imported_count, result.skipped_count)
    return _respond(result)
