from __future__ import annotations

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Sequence

from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.domain.entities.member import AuditRecord
from tenant_rbac.domain.entities.records import ExpenseRecord, ImportResult, SaleRecord
from tenant_rbac.errors import NotFoundError, UpstreamError
from tenant_rbac.rbac.evaluator import PermissionEvaluator
from tenant_rbac.rbac.guards import action_guard
from tenant_rbac.rbac.types import Permission
from tenant_rbac.repositories.profile_store import StoreError, TenantProfileStore
from tenant_rbac.repositories.record_repository import RecordRepository
from tenant_rbac.services.audit import AuditTrail
from tenant_rbac.utils.time_utils import utc_now

log = get_logger(__name__)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DMY_DATE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
# optional currency prefix (ISO code or symbol), then the number and nothing else
_AMOUNT = re.compile(r"^(?:[A-Za-z]{3}|R?\$|[€£¥])?\s*(-?[\d.,]+)$")
_CENTS = Decimal("0.01")


def _text(row: Mapping[str, Any], key: str) -> str:
    value = row.get(key)
    return "" if value is None else str(value).strip()


def parse_amount(raw: str) -> Decimal | None:
    m = _AMOUNT.match(raw.strip())
    if not m:
        return None
    cleaned = m.group(1)
    if "," in cleaned and "." in cleaned:
        cleaned = cleaned.replace(",", "")
    else:
        cleaned = cleaned.replace(",", ".")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def parse_date(raw: str) -> date | None:
    """YYYY-MM-DD or DD/MM/YYYY; impossible calendar dates are rejected."""
    m = _ISO_DATE.match(raw)
    if m:
        year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
    else:
        m = _DMY_DATE.match(raw)
        if not m:
            return None
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _amount_errors(row: Mapping[str, Any], line: int) -> tuple[Decimal | None, list[str]]:
    raw = _text(row, "amount")
    if not raw:
        return None, [f"line {line}: field 'amount' is required"]
    amount = parse_amount(raw)
    if amount is None:
        return None, [f"line {line}: field 'amount' must be a valid number"]
    if amount < 0:
        return None, [f"line {line}: field 'amount' cannot be negative"]
    return amount, []


def _date_errors(row: Mapping[str, Any], field: str, line: int) -> tuple[date | None, list[str]]:
    raw = _text(row, field)
    if not raw:
        return None, [f"line {line}: field '{field}' is required"]
    parsed = parse_date(raw)
    if parsed is None:
        return None, [f"line {line}: field '{field}' must be a valid date (YYYY-MM-DD or DD/MM/YYYY)"]
    return parsed, []


def validate_sales_row(row: Mapping[str, Any], line: int) -> tuple[SaleRecord | None, list[str]]:
    amount, errors = _amount_errors(row, line)
    sale_date, date_errors = _date_errors(row, "sale_date", line)
    errors += date_errors
    if errors:
        return None, errors
    return SaleRecord(amount=amount, sale_date=sale_date, description=_text(row, "description") or None), []


def validate_expenses_row(row: Mapping[str, Any], line: int) -> tuple[ExpenseRecord | None, list[str]]:
    amount, errors = _amount_errors(row, line)
    expense_date, date_errors = _date_errors(row, "expense_date", line)
    errors += date_errors
    if errors:
        return None, errors
    return (
        ExpenseRecord(
            amount=amount,
            expense_date=expense_date,
            description=_text(row, "description") or None,
            category=_text(row, "category") or None,
        ),
        [],
    )


class ImportService:
    """Bulk import of already-parsed sales/expense rows into the caller's company."""

    def __init__(
        self,
        evaluator: PermissionEvaluator,
        store: TenantProfileStore,
        records: RecordRepository,
        audit: AuditTrail,
    ):
        self._evaluator = evaluator
        self._store = store
        self._records = records
        self._audit = audit

    @action_guard(Permission.CSV_UPLOAD)
    async def import_sales(
        self,
        principal: Principal,
        rows: Sequence[Mapping[str, Any]],
        headers: Sequence[str] | None = None,
    ) -> ImportResult:
        return await self._import(
            principal,
            rows,
            headers,
            kind="sales",
            required=("amount", "sale_date"),
            validate=validate_sales_row,
            insert=self._records.insert_sales,
        )

    @action_guard(Permission.CSV_UPLOAD)
    async def import_expenses(
        self,
        principal: Principal,
        rows: Sequence[Mapping[str, Any]],
        headers: Sequence[str] | None = None,
    ) -> ImportResult:
        return await self._import(
            principal,
            rows,
            headers,
            kind="expenses",
            required=("amount", "expense_date"),
            validate=validate_expenses_row,
            insert=self._records.insert_expenses,
        )

    async def _import(
        self,
        principal: Principal,
        rows: Sequence[Mapping[str, Any]],
        headers: Sequence[str] | None,
        *,
        kind: str,
        required: tuple[str, ...],
        validate: Callable[[Mapping[str, Any], int], tuple[Any, list[str]]],
        insert: Callable,
    ) -> ImportResult:
        try:
            profile = await self._store.get_profile(principal.user_id)
        except StoreError as exc:
            raise UpstreamError() from exc
        if profile is None:
            raise NotFoundError("caller has no company")

        if headers is None:
            headers = list(rows[0].keys()) if rows else []
        missing = [h for h in required if h not in headers]
        if missing:
            return ImportResult(
                success=False,
                errors=[f"file must contain the columns: {', '.join(required)}. Missing: {', '.join(missing)}"],
            )

        valid: list[Any] = []
        errors: list[str] = []
        # line 1 is the header
        for index, row in enumerate(rows):
            record, row_errors = validate(row, index + 2)
            if record is not None:
                valid.append(record)
            else:
                errors.extend(row_errors)

        if not valid:
            return ImportResult(
                success=False,
                skipped_count=len(rows),
                errors=errors or ["no valid rows found"],
            )

        try:
            imported = await insert(profile.company_id, valid)
        except StoreError as exc:
            log.error("import.%s.insert_failed company_id=%s error=%s", kind, profile.company_id, exc)
            raise UpstreamError("could not save the imported rows, please try again") from exc

        skipped = len(rows) - len(valid)
        await self._audit.record(
            AuditRecord(
                action=f"import_{kind}",
                actor=principal.user_id,
                company_id=profile.company_id,
                detail={"imported_count": imported, "skipped_count": skipped},
                timestamp=utc_now(),
            )
        )
        message = f"{imported} {kind} row(s) imported"
        if errors:
            message += f" ({skipped} row(s) skipped)"
        return ImportResult(
            success=True,
            imported_count=imported,
            skipped_count=skipped,
            errors=errors,
            message=message,
        )
