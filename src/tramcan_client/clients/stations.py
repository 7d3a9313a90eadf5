from __future__ import annotations

from ..models import ApiEnvelope, TokenScope
from .base import BaseClient


class StationsClient(BaseClient):
    async def get_my_stations(self) -> ApiEnvelope:
        return await self._call("GET", "/tramcan/my-stations", TokenScope.SESSION)

    async def switch_station(self, station_id: int, is_activated: bool = False) -> ApiEnvelope:
        payload = {"tramCanId": station_id, "isActivated": is_activated}
        return await self._call("POST", "/tramcan/switch-station", TokenScope.SESSION, json_body=payload)

    async def get_station_detail(self, station_id: int) -> ApiEnvelope:
        return await self._call("GET", f"/tramcan/{int(station_id)}", TokenScope.SESSION)
