from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from tenant_rbac.auth.dependencies import get_financial_service, get_principal
from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.services.financial_service import FinancialService
from tenant_rbac.utils.response import success

log = get_logger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/metrics")
async def metrics(
    start: Optional[date] = None,
    end: Optional[date] = None,
    principal: Principal | None = Depends(get_principal),
    svc: FinancialService = Depends(get_financial_service),
) -> dict:
    result = await svc.financial_metrics(principal, start, end)
    return success(result.model_dump(mode="json"))


@router.get("/sales")
async def sales(
    start: date,
    end: date,
    principal: Principal | None = Depends(get_principal),
    svc: FinancialService = Depends(get_financial_service),
) -> dict:
    rows = await svc.sales_by_period(principal, start, end)
    log.info("dashboard.sales start=%s end=%s returned=%s", start, end, len(rows))
    return success([r.model_dump(mode="json") for r in rows])


@router.get("/expenses")
async def expenses(
    start: date,
    end: date,
    principal: Principal | None = Depends(get_principal),
    svc: FinancialService = Depends(get_financial_service),
) -> dict:
    rows = await svc.expenses_by_period(principal, start, end)
    log.info("dashboard.expenses start=%s end=%s returned=%s", start, end, len(rows))
    return success([r.model_dump(mode="json") for r in rows])
