from __future__ import annotations

import json

import httpx
import pytest

from tenant_rbac.webclient.identity_client import (
    IdentityConflict,
    IdentityProviderClient,
    IdentityProviderError,
    is_conflict,
)


def _client(handler) -> IdentityProviderClient:
    return IdentityProviderClient(
        base_url="http://idp.local/",
        service_key="svc-key",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.parametrize(
    "status,body,expected",
    [
        (422, {"error_code": "email_exists", "msg": "whatever"}, True),
        (422, {"code": "user_already_exists"}, True),
        (400, {"msg": "User already registered"}, True),
        (400, {"message": "Email already registered"}, True),
        (400, {"msg": "password too short"}, False),
        (500, None, False),
    ],
)
def test_is_conflict(status, body, expected) -> None:
    content = json.dumps(body).encode() if body is not None else b"<html>oops</html>"
    resp = httpx.Response(status, content=content)
    assert is_conflict(resp) is expected


async def test_create_identity_sends_admin_request() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["apikey"] = request.headers["apikey"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "p-123", "email": "new@x.com"})

    client = _client(handler)
    principal_id = await client.create_identity(" New@X.com ", "secret1")
    await client.aclose()

    assert principal_id == "p-123"
    assert seen["method"] == "POST"
    assert seen["url"] == "http://idp.local/admin/users"
    assert seen["auth"] == "Bearer svc-key"
    assert seen["apikey"] == "svc-key"
    assert seen["body"] == {"email": "new@x.com", "password": "secret1", "email_confirm": True}


async def test_create_identity_conflict() -> None:
    client = _client(lambda r: httpx.Response(422, json={"error_code": "email_exists"}))
    with pytest.raises(IdentityConflict):
        await client.create_identity("a@b.com", "secret1")


async def test_create_identity_other_failure() -> None:
    client = _client(lambda r: httpx.Response(500, text="down"))
    with pytest.raises(IdentityProviderError) as exc:
        await client.create_identity("a@b.com", "secret1")
    assert not isinstance(exc.value, IdentityConflict)


async def test_transport_error_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler)
    with pytest.raises(IdentityProviderError):
        await client.delete_identity("p-1")


async def test_delete_identity() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(200, json={})

    client = _client(handler)
    await client.delete_identity("p-1")
    assert seen == [("DELETE", "/admin/users/p-1")]


async def test_delete_identity_failure() -> None:
    client = _client(lambda r: httpx.Response(404, json={"msg": "not found"}))
    with pytest.raises(IdentityProviderError):
        await client.delete_identity("p-1")


async def test_list_identities() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["per_page"] == "1000"
        return httpx.Response(200, json={"users": [{"id": "p-1", "email": "a@x.com"}, {"id": "p-2"}]})

    client = _client(handler)
    identities = await client.list_identities()
    assert [(i.principal_id, i.email) for i in identities] == [("p-1", "a@x.com"), ("p-2", None)]
