from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from tenant_rbac.domain.entities.records import ExpenseRecord, SaleRecord
from tenant_rbac.errors import PermissionDeniedError, UpstreamError, ValidationError
from tenant_rbac.services.financial_service import growth, month_bounds


@pytest.fixture
def seeded(records, tenants):
    c, d = tenants.c.id, tenants.d.id
    for company, day, amount in (
        (c, date(2024, 3, 2), "100.00"),
        (c, date(2024, 3, 10), "50.00"),
        (c, date(2024, 2, 20), "120.00"),
        (c, date(2024, 1, 5), "30.00"),
        (d, date(2024, 3, 5), "999.00"),
    ):
        records.sales.append((company, SaleRecord(amount=Decimal(amount), sale_date=day)))
    for company, day, amount in (
        (c, date(2024, 3, 3), "40.00"),
        (c, date(2024, 2, 11), "60.00"),
        (d, date(2024, 2, 11), "7.00"),
    ):
        records.expenses.append((company, ExpenseRecord(amount=Decimal(amount), expense_date=day, category="ops")))
    return records


def test_month_bounds() -> None:
    assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds(date(2023, 12, 31)) == (date(2023, 12, 1), date(2023, 12, 31))


@pytest.mark.parametrize(
    "current,previous,expected",
    [
        ("150", "120", "25.00"),
        ("40", "60", "-33.33"),
        ("5", "0", "100.00"),
        ("0", "0", "0.00"),
    ],
)
def test_growth(current, previous, expected) -> None:
    assert growth(Decimal(current), Decimal(previous)) == Decimal(expected)


async def test_metrics_for_caller_company(financial_service, seeded, tenants) -> None:
    m = await financial_service.financial_metrics(tenants.u1)

    assert m.total_revenue == Decimal("300")
    assert m.total_expenses == Decimal("100")
    assert m.profit == Decimal("200")
    assert m.revenue_this_month == Decimal("150")
    assert m.revenue_last_month == Decimal("120")
    assert m.expenses_this_month == Decimal("40")
    assert m.expenses_last_month == Decimal("60")
    assert m.profit_this_month == Decimal("110")
    assert m.profit_last_month == Decimal("60")
    assert m.revenue_growth == Decimal("25.00")
    assert m.expenses_growth == Decimal("-33.33")


async def test_metrics_period_filter(financial_service, seeded, tenants) -> None:
    m = await financial_service.financial_metrics(tenants.a1, date(2024, 2, 1), date(2024, 2, 29))
    assert m.total_revenue == Decimal("120")
    assert m.total_expenses == Decimal("60")
    # month-over-month figures ignore the period
    assert m.revenue_this_month == Decimal("150")


async def test_metrics_are_company_scoped(financial_service, seeded, tenants) -> None:
    m = await financial_service.financial_metrics(tenants.b1)
    assert m.total_revenue == Decimal("999")
    assert m.total_expenses == Decimal("7")
    assert m.revenue_growth == Decimal("100.00")


@pytest.mark.parametrize("who", ["outsider", None])
async def test_metrics_denied_before_any_read(financial_service, seeded, tenants, who) -> None:
    principal = getattr(tenants, who) if who else None
    # a read would raise StoreError; the denial must come first
    seeded.fail = True
    with pytest.raises(PermissionDeniedError):
        await financial_service.financial_metrics(principal)
    with pytest.raises(PermissionDeniedError):
        await financial_service.sales_by_period(principal, date(2024, 1, 1), date(2024, 12, 31))
    with pytest.raises(PermissionDeniedError):
        await financial_service.expenses_by_period(principal, date(2024, 1, 1), date(2024, 12, 31))


async def test_sales_by_period(financial_service, seeded, tenants) -> None:
    rows = await financial_service.sales_by_period(tenants.a1, date(2024, 2, 1), date(2024, 3, 5))
    assert [(r.sale_date, r.amount) for r in rows] == [
        (date(2024, 2, 20), Decimal("120.00")),
        (date(2024, 3, 2), Decimal("100.00")),
    ]


async def test_expenses_by_period_other_company(financial_service, seeded, tenants) -> None:
    rows = await financial_service.expenses_by_period(tenants.b1, date(2024, 1, 1), date(2024, 12, 31))
    assert [(r.amount, r.category) for r in rows] == [(Decimal("7.00"), "ops")]


async def test_reversed_period_is_rejected(financial_service, seeded, tenants) -> None:
    with pytest.raises(ValidationError) as exc:
        await financial_service.sales_by_period(tenants.a1, date(2024, 3, 1), date(2024, 2, 1))
    assert exc.value.field == "start"


async def test_read_failure_is_upstream(financial_service, seeded, tenants) -> None:
    seeded.fail = True
    with pytest.raises(UpstreamError):
        await financial_service.financial_metrics(tenants.a1)
