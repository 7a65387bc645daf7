from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class SaleRecord(BaseModel):
    amount: Decimal
    sale_date: date
    description: Optional[str] = None


class ExpenseRecord(BaseModel):
    amount: Decimal
    expense_date: date
    description: Optional[str] = None
    category: Optional[str] = None


class ImportRequest(BaseModel):
    """Rows already parsed from the uploaded file, header keys lower-cased."""

    rows: list[dict[str, Any]] = Field(default_factory=list)
    headers: Optional[list[str]] = None


class ImportResult(BaseModel):
    success: bool
    imported_count: int = 0
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)
    message: Optional[str] = None


class FinancialMetrics(BaseModel):
    """Company totals for the selected period plus month-over-month figures."""

    total_revenue: Decimal
    total_expenses: Decimal
    profit: Decimal
    revenue_this_month: Decimal
    expenses_this_month: Decimal
    profit_this_month: Decimal
    revenue_last_month: Decimal
    expenses_last_month: Decimal
    profit_last_month: Decimal
    # percent, 2 decimals
    revenue_growth: Decimal
    expenses_growth: Decimal
