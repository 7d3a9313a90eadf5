from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import ok
from tramcan_client.exceptions import ApiError, AuthError, ServerError, TransportError
from tramcan_client.http_client import SESSION_HEADER
from tramcan_client.models import TokenScope


class Tokens:
    def __init__(self, **tokens: str | None) -> None:
        self.tokens = {TokenScope(key): value for key, value in tokens.items()}

    async def __call__(self, scope: TokenScope) -> str | None:
        return self.tokens.get(scope)


def _unauthorized(request: httpx.Request) -> httpx.Response:
    return httpx.Response(401, json={"success": False, "message": "Token expired"})


def test_token_is_read_live_for_every_request(make_http, backend) -> None:
    tokens = Tokens(session="tok-a")
    http = make_http(token_provider=tokens)
    backend.add("GET", "/tramcan/my-stations", ok([]))

    async def scenario():
        await http.request("GET", "/tramcan/my-stations", scope=TokenScope.SESSION)
        tokens.tokens[TokenScope.SESSION] = "tok-b"
        await http.request("GET", "/tramcan/my-stations", scope=TokenScope.SESSION)

    asyncio.run(scenario())

    sent = backend.calls("/tramcan/my-stations")
    assert [request.headers["Authorization"] for request in sent] == ["Bearer tok-a", "Bearer tok-b"]
    assert [request.headers[SESSION_HEADER] for request in sent] == ["tok-a", "tok-b"]


def test_scopes_pick_their_own_token(make_http, backend) -> None:
    http = make_http(token_provider=Tokens(session="session-tok", resource="bearer"))
    backend.add("GET", "/phieucan", ok([]))
    backend.add("POST", "/auth/tenant-login", ok({}))

    async def scenario():
        await http.request("GET", "/phieucan", scope=TokenScope.RESOURCE)
        await http.request("POST", "/auth/tenant-login", json_body={"maKhachHang": "KH001"})

    asyncio.run(scenario())

    resource, public = backend.requests
    assert resource.headers["Authorization"] == "Bearer bearer"
    assert SESSION_HEADER not in resource.headers
    assert "Authorization" not in public.headers


def test_explicit_token_overrides_stored_one(make_http, backend) -> None:
    http = make_http(token_provider=Tokens(session="stored"))
    backend.add("POST", "/auth/select-station", ok({}))

    asyncio.run(http.request("POST", "/auth/select-station", scope=TokenScope.SESSION, token="explicit"))

    assert backend.requests[0].headers["Authorization"] == "Bearer explicit"


def test_401_is_reported_once_and_not_retried_with_same_token(make_http, backend) -> None:
    http = make_http(token_provider=Tokens(resource="stale"))
    seen: list[ApiError] = []
    http.register_auth_error_handler(seen.append)
    backend.add("GET", "/phieucan", _unauthorized)

    with pytest.raises(AuthError):
        asyncio.run(http.request("GET", "/phieucan", scope=TokenScope.RESOURCE))

    assert len(backend.calls("/phieucan")) == 1
    assert [error.status_code for error in seen] == [401]


def test_401_twice_in_a_row_is_retried_at_most_once(make_http, backend) -> None:
    tokens = Tokens(resource="old")
    http = make_http(token_provider=tokens)
    handled: list[int | None] = []

    async def handler(error: ApiError) -> None:
        handled.append(error.status_code)
        tokens.tokens[TokenScope.RESOURCE] = "new"

    http.register_auth_error_handler(handler)
    backend.add("GET", "/phieucan", _unauthorized)

    with pytest.raises(AuthError):
        asyncio.run(http.request("GET", "/phieucan", scope=TokenScope.RESOURCE))

    sent = backend.calls("/phieucan")
    assert [request.headers["Authorization"] for request in sent] == ["Bearer old", "Bearer new"]
    assert handled == [401]


def test_retry_after_token_change_can_succeed(make_http, backend) -> None:
    tokens = Tokens(resource="old")
    http = make_http(token_provider=tokens)
    http.register_auth_error_handler(lambda error: tokens.tokens.update({TokenScope.RESOURCE: "new"}))
    backend.add("GET", "/phieucan", _unauthorized, ok([{"id": 1}]))

    payload = asyncio.run(http.request("GET", "/phieucan", scope=TokenScope.RESOURCE))

    assert payload["data"] == [{"id": 1}]
    assert len(backend.calls("/phieucan")) == 2


def test_missing_resource_token_fails_without_network(make_http, backend) -> None:
    http = make_http(token_provider=Tokens())
    seen: list[ApiError] = []
    http.register_auth_error_handler(seen.append)

    with pytest.raises(AuthError) as excinfo:
        asyncio.run(http.request("GET", "/phieucan", scope=TokenScope.RESOURCE))

    assert excinfo.value.code == "AUTH_REQUIRED"
    assert backend.requests == []
    assert seen == []


def test_public_401_does_not_reach_the_auth_handler(make_http, backend) -> None:
    http = make_http()
    seen: list[ApiError] = []
    http.register_auth_error_handler(seen.append)
    backend.add("POST", "/auth/tenant-login", _unauthorized)

    with pytest.raises(AuthError):
        asyncio.run(http.request("POST", "/auth/tenant-login", json_body={}))

    assert seen == []


def test_server_errors_propagate_without_retry(make_http, backend) -> None:
    http = make_http(token_provider=Tokens(session="tok"))
    seen: list[ApiError] = []
    http.register_auth_error_handler(seen.append)
    backend.add("GET", "/tramcan/my-stations", httpx.Response(503, json={"message": "maintenance"}))

    with pytest.raises(ServerError):
        asyncio.run(http.request("GET", "/tramcan/my-stations", scope=TokenScope.SESSION))

    assert len(backend.requests) == 1
    assert seen == []


def test_timeout_becomes_transport_error(make_http, backend) -> None:
    http = make_http()

    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    backend.add("POST", "/auth/tenant-login", slow)

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(http.request("POST", "/auth/tenant-login", json_body={}))

    assert excinfo.value.code == "TIMEOUT_ERROR"
    assert excinfo.value.status_code is None


def test_connection_failure_becomes_transport_error(make_http, backend) -> None:
    http = make_http()

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend.add("POST", "/auth/tenant-login", refused)

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(http.request("POST", "/auth/tenant-login", json_body={}))

    assert excinfo.value.code == "NETWORK_ERROR"


def test_non_json_body_is_invalid_response(make_http, backend) -> None:
    http = make_http()
    backend.add("GET", "/health", httpx.Response(200, text="<html>ok</html>"))

    with pytest.raises(ApiError) as excinfo:
        asyncio.run(http.request("GET", "/health"))

    assert excinfo.value.code == "INVALID_RESPONSE"
