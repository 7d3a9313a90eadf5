from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import fail, ok, request_json, station
from tramcan_client.clients import AuthClient, StationsClient
from tramcan_client.exceptions import ApiError, ValidationError
from tramcan_client.models import TokenScope


async def _session_token(scope: TokenScope) -> str | None:
    return "tok1" if scope is TokenScope.SESSION else None


def test_tenant_login_posts_camel_case_credentials(make_http, backend) -> None:
    auth = AuthClient(http=make_http())
    backend.add("POST", "/auth/tenant-login", ok({"sessionToken": "tok1"}))

    envelope = asyncio.run(auth.tenant_login("KH001", "secret"))

    assert envelope.success is True
    assert envelope.data == {"sessionToken": "tok1"}
    assert request_json(backend.requests[0]) == {"maKhachHang": "KH001", "password": "secret"}


@pytest.mark.parametrize("status", [400, 401])
def test_rejected_credentials_come_back_as_envelope(make_http, backend, status: int) -> None:
    auth = AuthClient(http=make_http())
    backend.add("POST", "/auth/tenant-login", httpx.Response(status, json=fail("Sai mat khau")))

    envelope = asyncio.run(auth.tenant_login("KH001", "wrong"))

    assert envelope.success is False
    assert envelope.message == "Sai mat khau"


def test_session_scoped_errors_are_raised(make_http, backend) -> None:
    stations = StationsClient(http=make_http(token_provider=_session_token))
    backend.add("POST", "/tramcan/switch-station", httpx.Response(400, json=fail("Tram khong hop le")))

    with pytest.raises(ValidationError):
        asyncio.run(stations.switch_station(9))


def test_select_station_uses_the_given_token(make_http, backend) -> None:
    auth = AuthClient(http=make_http())
    backend.add("POST", "/auth/select-station", ok({}))

    asyncio.run(auth.select_station("tok1", 7))

    request = backend.requests[0]
    assert request.headers["Authorization"] == "Bearer tok1"
    assert request_json(request) == {"tramCanId": 7, "isActivated": False}


def test_station_endpoints(make_http, backend) -> None:
    stations = StationsClient(http=make_http(token_provider=_session_token))
    backend.add("GET", "/tramcan/my-stations", ok({"tramCans": [station(7)]}))
    backend.add("GET", "/tramcan/7", ok(station(7)))

    async def scenario():
        return await stations.get_my_stations(), await stations.get_station_detail(7)

    listing, detail = asyncio.run(scenario())

    assert listing.data == {"tramCans": [station(7)]}
    assert detail.data["maTramCan"] == "TC07"


def test_logout_and_validate_bodies(make_http, backend) -> None:
    auth = AuthClient(http=make_http())
    backend.add("POST", "/auth/logout", ok())
    backend.add("POST", "/auth/validate-session", ok({"sessionType": "full"}))

    async def scenario():
        await auth.logout("tok1")
        return await auth.validate_session("tok1")

    envelope = asyncio.run(scenario())

    logout, validate = backend.requests
    assert request_json(logout) == {"sessionToken": "tok1"}
    assert logout.headers["Authorization"] == "Bearer tok1"
    assert request_json(validate) == {"sessionToken": "tok1"}
    assert "Authorization" not in validate.headers
    assert envelope.data == {"sessionType": "full"}


def test_non_envelope_payload_is_invalid(make_http, backend) -> None:
    auth = AuthClient(http=make_http())
    backend.add("POST", "/auth/login", ["not", "an", "envelope"])

    with pytest.raises(ApiError) as excinfo:
        asyncio.run(auth.login("demo", "pass"))

    assert excinfo.value.code == "INVALID_RESPONSE"


def test_station_user_rejection_skips_the_auth_error_handler(make_http, backend) -> None:
    http = make_http(token_provider=_session_token)
    seen: list[ApiError] = []
    http.register_auth_error_handler(seen.append)
    auth = AuthClient(http=http)
    backend.add("POST", "/auth/station-user-login", httpx.Response(401, json=fail("Sai mat khau")))

    envelope = asyncio.run(auth.station_user_login("NV01", "bad"))

    assert envelope.success is False
    assert envelope.message == "Sai mat khau"
    assert seen == []
    assert len(backend.requests) == 1


def test_null_message_reads_as_empty(make_http, backend) -> None:
    auth = AuthClient(http=make_http())
    backend.add("POST", "/auth/login", {"success": False, "message": None, "data": None})

    envelope = asyncio.run(auth.login("demo", "pass"))

    assert envelope.success is False
    assert envelope.message == ""


def test_malformed_envelope_is_invalid(make_http, backend) -> None:
    auth = AuthClient(http=make_http())
    backend.add("POST", "/auth/login", {"success": {"unexpected": 1}})

    with pytest.raises(ApiError) as excinfo:
        asyncio.run(auth.login("demo", "pass"))

    assert excinfo.value.code == "INVALID_RESPONSE"
