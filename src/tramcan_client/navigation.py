from __future__ import annotations

from enum import Enum

from .models import AuthLevel, AuthSnapshot


class Route(str, Enum):
    LOGIN = "login"
    STATION_SELECTION = "station_selection"
    STATION_LIST_REFRESH = "station_list_refresh"
    MAIN = "main"


def resolve_initial_route(snapshot: AuthSnapshot) -> Route:
    """Pick the first screen stack from the auth level and, for tenants, the cached station list."""
    if snapshot.auth_level is AuthLevel.STATION:
        return Route.MAIN
    if snapshot.auth_level is AuthLevel.TENANT:
        return Route.STATION_SELECTION if snapshot.stations else Route.STATION_LIST_REFRESH
    return Route.LOGIN
