from __future__ import annotations

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable

from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.domain.entities.member import Profile
from tenant_rbac.domain.entities.records import ExpenseRecord, FinancialMetrics, SaleRecord
from tenant_rbac.errors import NotFoundError, UpstreamError, ValidationError
from tenant_rbac.rbac.evaluator import PermissionEvaluator
from tenant_rbac.rbac.guards import action_guard
from tenant_rbac.rbac.types import Permission
from tenant_rbac.repositories.profile_store import StoreError, TenantProfileStore
from tenant_rbac.repositories.record_repository import RecordRepository
from tenant_rbac.utils.time_utils import utc_now

log = get_logger(__name__)

_ZERO = Decimal("0")
_CENTS = Decimal("0.01")


def month_bounds(day: date) -> tuple[date, date]:
    """First and last day of the month containing `day`."""
    first = day.replace(day=1)
    last = (first + timedelta(days=32)).replace(day=1) - timedelta(days=1)
    return first, last


def growth(current: Decimal, previous: Decimal) -> Decimal:
    """Percent change; 100 when growing from nothing, 0 when both are empty."""
    if previous > 0:
        pct = (current - previous) / previous * 100
    elif current > 0:
        pct = Decimal(100)
    else:
        pct = _ZERO
    return pct.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _total(records: Iterable[SaleRecord | ExpenseRecord]) -> Decimal:
    return sum((r.amount for r in records), _ZERO)


def _check_period(start: date | None, end: date | None) -> None:
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end", field="start")


class FinancialService:
    """Read side of the company's sales and expenses, gated on FINANCIAL_DATA_VIEW."""

    def __init__(
        self,
        evaluator: PermissionEvaluator,
        store: TenantProfileStore,
        records: RecordRepository,
        today: Callable[[], date] | None = None,
    ):
        self._evaluator = evaluator
        self._store = store
        self._records = records
        self._today = today or (lambda: utc_now().date())

    async def _caller_profile(self, principal: Principal) -> Profile:
        try:
            profile = await self._store.get_profile(principal.user_id)
        except StoreError as exc:
            raise UpstreamError() from exc
        if profile is None:
            raise NotFoundError("caller has no company")
        return profile

    async def _sales(self, company_id: str, start: date | None, end: date | None) -> list[SaleRecord]:
        try:
            return await self._records.list_sales(company_id, start, end)
        except StoreError as exc:
            log.error("financial.sales.read_failed company_id=%s error=%s", company_id, exc)
            raise UpstreamError() from exc

    async def _expenses(self, company_id: str, start: date | None, end: date | None) -> list[ExpenseRecord]:
        try:
            return await self._records.list_expenses(company_id, start, end)
        except StoreError as exc:
            log.error("financial.expenses.read_failed company_id=%s error=%s", company_id, exc)
            raise UpstreamError() from exc

    @action_guard(Permission.FINANCIAL_DATA_VIEW)
    async def financial_metrics(
        self,
        principal: Principal,
        start: date | None = None,
        end: date | None = None,
    ) -> FinancialMetrics:
        _check_period(start, end)
        company_id = (await self._caller_profile(principal)).company_id

        revenue = _total(await self._sales(company_id, start, end))
        expenses = _total(await self._expenses(company_id, start, end))

        this_start, this_end = month_bounds(self._today())
        last_start, last_end = month_bounds(this_start - timedelta(days=1))
        revenue_this = _total(await self._sales(company_id, this_start, this_end))
        expenses_this = _total(await self._expenses(company_id, this_start, this_end))
        revenue_last = _total(await self._sales(company_id, last_start, last_end))
        expenses_last = _total(await self._expenses(company_id, last_start, last_end))

        log.info("financial.metrics company_id=%s start=%s end=%s", company_id, start, end)
        return FinancialMetrics(
            total_revenue=revenue,
            total_expenses=expenses,
            profit=revenue - expenses,
            revenue_this_month=revenue_this,
            expenses_this_month=expenses_this,
            profit_this_month=revenue_this - expenses_this,
            revenue_last_month=revenue_last,
            expenses_last_month=expenses_last,
            profit_last_month=revenue_last - expenses_last,
            revenue_growth=growth(revenue_this, revenue_last),
            expenses_growth=growth(expenses_this, expenses_last),
        )

    @action_guard(Permission.FINANCIAL_DATA_VIEW)
    async def sales_by_period(self, principal: Principal, start: date, end: date) -> list[SaleRecord]:
        _check_period(start, end)
        company_id = (await self._caller_profile(principal)).company_id
        return await self._sales(company_id, start, end)

    @action_guard(Permission.FINANCIAL_DATA_VIEW)
    async def expenses_by_period(self, principal: Principal, start: date, end: date) -> list[ExpenseRecord]:
        _check_period(start, end)
        company_id = (await self._caller_profile(principal)).company_id
        return await self._expenses(company_id, start, end)
