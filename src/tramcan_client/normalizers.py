from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .models import KhachHang, Station, StationUser, StationUserSession, TenantInfo, TenantSession


class PayloadShapeError(ValueError):
    pass


def normalize_station_listing(payload: Any) -> list[Station]:
    """Accept a bare list, {tramCans: [...]}, {items: [...]} or {data: [...]}."""
    rows: Any = []
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        for key in ("tramCans", "items", "rows", "data"):
            if isinstance(payload.get(key), list):
                rows = payload[key]
                break
    stations: list[Station] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            stations.append(Station.model_validate(row))
        except PydanticValidationError:
            continue
    return stations


def normalize_khach_hang(payload: Any) -> KhachHang:
    if not isinstance(payload, dict):
        raise PayloadShapeError("Missing tenant identity in response")
    nested = payload.get("khachHang")
    source = nested if isinstance(nested, dict) else payload
    try:
        khach_hang = KhachHang.model_validate(source)
    except PydanticValidationError as exc:
        raise PayloadShapeError("Malformed tenant identity in response") from exc
    if khach_hang.id is None and _to_int(payload.get("khachHangId")) is not None:
        khach_hang = khach_hang.model_copy(update={"id": _to_int(payload.get("khachHangId"))})
    return khach_hang


def normalize_tenant_login(payload: Any) -> TenantSession:
    """Tenant login data arrives flat (maKhachHang at top level) or nested under khachHang."""
    if not isinstance(payload, dict):
        raise PayloadShapeError("Tenant login response has no data")
    token = payload.get("sessionToken")
    if not isinstance(token, str) or not token:
        raise PayloadShapeError("Tenant login response has no session token")
    try:
        khach_hang: KhachHang | None = normalize_khach_hang(payload)
    except PayloadShapeError:
        khach_hang = None
    return TenantSession(
        session_token=token,
        khach_hang=khach_hang,
        tram_cans=normalize_station_listing(payload),
    )


def normalize_station_selection(
    payload: Any,
    fallback_khach_hang: KhachHang | None = None,
    fallback_station: Station | None = None,
    requested_id: int | None = None,
) -> TenantInfo:
    """Shared by select-station and switch-station responses.

    When ``requested_id`` is given, an answer naming any other station is refused.
    """
    if not isinstance(payload, dict):
        raise PayloadShapeError("Station response has no data")
    token = payload.get("sessionToken")
    if not isinstance(token, str) or not token:
        raise PayloadShapeError("Station response has no session token")
    selected = payload.get("selectedStation")
    if isinstance(selected, dict):
        try:
            station = Station.model_validate(selected)
        except PydanticValidationError as exc:
            raise PayloadShapeError("Malformed selected station in response") from exc
    elif fallback_station is not None:
        station = fallback_station
    else:
        raise PayloadShapeError("Station response has no selected station")
    if requested_id is not None and station.id != requested_id:
        raise PayloadShapeError(f"Station response selected station {station.id}, not {requested_id}")
    try:
        khach_hang = normalize_khach_hang(payload)
    except PayloadShapeError:
        if fallback_khach_hang is None:
            raise
        khach_hang = fallback_khach_hang
    return TenantInfo(
        khach_hang=khach_hang,
        selected_station=station,
        session_token=token,
    )


def _to_int(value: Any) -> int | None:
    try:
        if value is None or value == "":
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_user_login(payload: Any) -> StationUserSession:
    """Station-user and generic logins answer {token|sessionToken, stationUser|user}."""
    if not isinstance(payload, dict):
        raise PayloadShapeError("Login response has no data")
    token = payload.get("token") or payload.get("sessionToken")
    if not isinstance(token, str) or not token:
        raise PayloadShapeError("Login response has no token")
    profile = payload.get("stationUser") or payload.get("user")
    if not isinstance(profile, dict):
        raise PayloadShapeError("Login response has no user profile")
    try:
        user = StationUser.model_validate(profile)
    except PydanticValidationError as exc:
        raise PayloadShapeError("Malformed user profile in response") from exc
    return StationUserSession(user=user, token=token)
