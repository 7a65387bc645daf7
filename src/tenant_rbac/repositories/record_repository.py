from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.configs.settings import Settings
from tenant_rbac.domain.entities.records import ExpenseRecord, SaleRecord
from tenant_rbac.repositories.profile_store import StoreError
from tenant_rbac.utils.time_utils import utc_now

log = get_logger(__name__)


class RecordRepository:
    """Company-scoped financial records (sales, expenses)."""

    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._sales = db["sales"]
        self._expenses = db["expenses"]

    async def ensure_indexes(self) -> None:
        log.info("repo.record.ensure_indexes start")
        await self._sales.create_index([("company_id", 1), ("sale_date", -1)])
        await self._expenses.create_index([("company_id", 1), ("expense_date", -1)])
        log.info("repo.record.ensure_indexes done")

    async def insert_sales(self, company_id: str, records: list[SaleRecord]) -> int:
        docs = [
            {
                "_id": str(uuid.uuid4()),
                "company_id": company_id,
                "amount": str(r.amount),
                "description": r.description,
                # BSON has no date-only type
                "sale_date": datetime.combine(r.sale_date, time.min),
                "created_at": utc_now(),
            }
            for r in records
        ]
        return await self._insert(self._sales, company_id, docs)

    async def insert_expenses(self, company_id: str, records: list[ExpenseRecord]) -> int:
        docs = [
            {
                "_id": str(uuid.uuid4()),
                "company_id": company_id,
                "amount": str(r.amount),
                "description": r.description,
                "category": r.category,
                "expense_date": datetime.combine(r.expense_date, time.min),
                "created_at": utc_now(),
            }
            for r in records
        ]
        return await self._insert(self._expenses, company_id, docs)

    async def _insert(self, col, company_id: str, docs: list[dict[str, Any]]) -> int:
        log.info("repo.record.insert collection=%s company_id=%s count=%s", col.name, company_id, len(docs))
        if not docs:
            return 0
        try:
            res = await col.insert_many(docs)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return len(res.inserted_ids)

    async def list_sales(
        self,
        company_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[SaleRecord]:
        docs = await self._find(self._sales, company_id, "sale_date", start, end)
        return [
            SaleRecord(
                amount=Decimal(d["amount"]),
                sale_date=d["sale_date"].date(),
                description=d.get("description"),
            )
            for d in docs
        ]

    async def list_expenses(
        self,
        company_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[ExpenseRecord]:
        docs = await self._find(self._expenses, company_id, "expense_date", start, end)
        return [
            ExpenseRecord(
                amount=Decimal(d["amount"]),
                expense_date=d["expense_date"].date(),
                description=d.get("description"),
                category=d.get("category"),
            )
            for d in docs
        ]

    async def _find(
        self,
        col,
        company_id: str,
        date_field: str,
        start: date | None,
        end: date | None,
    ) -> list[dict[str, Any]]:
        q: dict[str, Any] = {"company_id": company_id}
        window: dict[str, Any] = {}
        if start is not None:
            window["$gte"] = datetime.combine(start, time.min)
        if end is not None:
            window["$lte"] = datetime.combine(end, time.min)
        if window:
            q[date_field] = window
        log.info(
            "repo.record.find collection=%s company_id=%s start=%s end=%s",
            col.name,
            company_id,
            start,
            end,
        )
        try:
            cursor = col.find(q, {"amount": 1, date_field: 1, "description": 1, "category": 1}).sort(date_field, 1)
            return await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
