from __future__ import annotations

from fastapi import APIRouter

from tenant_rbac.utils.response import success

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    return success({"ok": True}, message="healthy")
