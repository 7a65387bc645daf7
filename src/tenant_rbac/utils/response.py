from __future__ import annotations

from typing import Any

from tenant_rbac.utils.time_utils import now_ms


def success(data: Any, message: str = "request processed successfully") -> dict[str, Any]:
    return {"status": "success", "message": message, "data": data, "timestamp": now_ms()}


def failure(message: str, **extra: Any) -> dict[str, Any]:
    body = {"status": "failure", "message": message, "timestamp": now_ms()}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body
