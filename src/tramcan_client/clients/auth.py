from __future__ import annotations

from ..models import ApiEnvelope, TokenScope
from .base import BaseClient


class AuthClient(BaseClient):
    async def tenant_login(self, ma_khach_hang: str, password: str) -> ApiEnvelope:
        payload = {"maKhachHang": ma_khach_hang, "password": password}
        return await self._call("POST", "/auth/tenant-login", json_body=payload)

    async def select_station(self, session_token: str, station_id: int, is_activated: bool = False) -> ApiEnvelope:
        # The token comes from the caller: nothing is persisted for the tenant yet at this point.
        payload = {"tramCanId": station_id, "isActivated": is_activated}
        return await self._call(
            "POST",
            "/auth/select-station",
            TokenScope.SESSION,
            token=session_token,
            json_body=payload,
        )

    async def station_user_login(self, nv_id: str, password: str) -> ApiEnvelope:
        payload = {"nvId": nv_id, "password": password}
        # A wrong password is a rejected envelope, not an expired station session.
        return await self._call(
            "POST",
            "/auth/station-user-login",
            TokenScope.SESSION,
            envelope_on_error=True,
            json_body=payload,
        )

    async def validate_session(self, session_token: str) -> ApiEnvelope:
        return await self._call("POST", "/auth/validate-session", json_body={"sessionToken": session_token})

    async def logout(self, session_token: str) -> ApiEnvelope:
        return await self._call(
            "POST",
            "/auth/logout",
            TokenScope.SESSION,
            token=session_token,
            json_body={"sessionToken": session_token},
        )

    async def login(self, username: str, password: str) -> ApiEnvelope:
        payload = {"username": username, "password": password}
        return await self._call("POST", "/auth/login", json_body=payload)
