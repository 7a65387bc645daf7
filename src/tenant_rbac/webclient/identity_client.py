from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from tenant_rbac.configs.logging_config import get_logger

log = get_logger(__name__)

CONFLICT_CODES = frozenset({"email_exists", "user_already_exists"})
# Fallback for providers that only return a message.
CONFLICT_MESSAGE_FRAGMENT = "already registered"


class IdentityProviderError(Exception):
    """Transport or non-2xx failure. Message is for logs only."""


class IdentityConflict(IdentityProviderError):
    """The email is already registered."""


@dataclass(frozen=True)
class Identity:
    principal_id: str
    email: str | None


def _payload(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def is_conflict(resp: httpx.Response) -> bool:
    body = _payload(resp)
    for key in ("error_code", "code"):
        code = body.get(key)
        if isinstance(code, str) and code in CONFLICT_CODES:
            return True
    for key in ("msg", "message", "error_description", "error"):
        text = body.get(key)
        if isinstance(text, str) and CONFLICT_MESSAGE_FRAGMENT in text.lower():
            return True
    return False


class IdentityProviderClient:
    """
    Admin client for a GoTrue-style identity provider.

    Authenticates with the service key; every call bypasses the provider's
    per-user policies, so it is only reachable from the member service.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._service_key = service_key
        self.session = client or httpx.AsyncClient(timeout=timeout)

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {self._service_key}"
        headers["apikey"] = self._service_key
        try:
            return await self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                **kwargs,
            )
        except httpx.HTTPError as exc:
            log.error("identity.transport_failed method=%s path=%s error=%s", method, path, exc)
            raise IdentityProviderError(str(exc)) from exc

    async def create_identity(self, email: str, credential: str) -> str:
        email = email.strip().lower()
        resp = await self.request(
            "POST",
            "/admin/users",
            json={"email": email, "password": credential, "email_confirm": True},
        )
        if resp.is_success:
            body = _payload(resp)
            principal_id = body.get("id") or (body.get("user") or {}).get("id")
            if not principal_id:
                raise IdentityProviderError("create_identity: response without id")
            log.info("identity.created principal_id=%s", principal_id)
            return str(principal_id)
        if is_conflict(resp):
            log.info("identity.create.conflict status=%s", resp.status_code)
            raise IdentityConflict("email already registered")
        log.error("identity.create.failed status=%s body=%s", resp.status_code, resp.text[:200])
        raise IdentityProviderError(f"create_identity: status {resp.status_code}")

    async def delete_identity(self, principal_id: str) -> None:
        resp = await self.request("DELETE", f"/admin/users/{principal_id}")
        if not resp.is_success:
            log.error(
                "identity.delete.failed principal_id=%s status=%s body=%s",
                principal_id,
                resp.status_code,
                resp.text[:200],
            )
            raise IdentityProviderError(f"delete_identity: status {resp.status_code}")
        log.info("identity.deleted principal_id=%s", principal_id)

    async def list_identities(self) -> list[Identity]:
        resp = await self.request("GET", "/admin/users", params={"page": 1, "per_page": 1000})
        if not resp.is_success:
            log.error("identity.list.failed status=%s", resp.status_code)
            raise IdentityProviderError(f"list_identities: status {resp.status_code}")
        body = resp.json()
        users = body.get("users", []) if isinstance(body, dict) else body
        return [Identity(principal_id=str(u["id"]), email=u.get("email")) for u in users]

    async def aclose(self) -> None:
        await self.session.aclose()
