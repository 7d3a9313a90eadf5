"""Persistence of the three session tiers.

Nothing else in the package touches raw storage keys. Every record is a JSON
object tagged with ``schemaVersion``; records written by older clients (raw
token strings, un-versioned tenant info) are read as version 0 and upgraded in
memory. Unreadable or structurally invalid records count as absent.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .exceptions import StorageError
from .logger import get_logger, log_action
from .models import (
    SCHEMA_VERSION,
    AuthLevel,
    StartupState,
    Station,
    StationUser,
    StationUserSession,
    TenantInfo,
    TenantSession,
    TokenScope,
)
from .storage import KeyValueStore

AUTH_TOKEN_KEY = "auth_token"
SESSION_TOKEN_KEY = "session_token"
TENANT_INFO_KEY = "tenant_info"
USER_INFO_KEY = "user_info"

ALL_KEYS = (AUTH_TOKEN_KEY, SESSION_TOKEN_KEY, TENANT_INFO_KEY, USER_INFO_KEY)
_TOKEN_KEYS = {AUTH_TOKEN_KEY, SESSION_TOKEN_KEY}
_VERSION_FIELD = "schemaVersion"

logger = get_logger("tramcan.session_store")


class SessionStore:
    def __init__(self, backend: KeyValueStore) -> None:
        self._backend = backend

    async def load_on_startup(self) -> StartupState:
        try:
            return await self._load()
        except Exception as exc:  # app start must never fail here
            log_action(logger, "session_store", "load_on_startup", "error", level=logging.ERROR, error=str(exc))
            return StartupState(auth_level=AuthLevel.NONE)

    async def _load(self) -> StartupState:
        tenant_info = await self.read_tenant_info()
        tenant_session = await self.read_tenant_session()
        station_user = await self.read_station_user()

        if tenant_info is not None:
            if tenant_info.session_token is None and tenant_session is not None:
                tenant_info = tenant_info.model_copy(update={"session_token": tenant_session.session_token})
            level = AuthLevel.STATION
        elif tenant_session is not None:
            level = AuthLevel.TENANT
        else:
            level = AuthLevel.NONE

        log_action(logger, "session_store", "load_on_startup", "ok", auth_level=level.value)
        return StartupState(
            auth_level=level,
            tenant_session=tenant_session,
            tenant_info=tenant_info,
            station_user=station_user,
        )

    async def read_tenant_info(self) -> TenantInfo | None:
        record = await self._read_record(TENANT_INFO_KEY)
        return self._validate(TENANT_INFO_KEY, TenantInfo, record)

    async def read_tenant_session(self) -> TenantSession | None:
        record = await self._read_record(SESSION_TOKEN_KEY)
        return self._validate(SESSION_TOKEN_KEY, TenantSession, record)

    async def read_station_user(self) -> StationUserSession | None:
        token = await self.read_auth_token()
        if not token:
            return None
        record = await self._read_record(USER_INFO_KEY)
        user = self._validate(USER_INFO_KEY, StationUser, record)
        if user is None:
            return None
        return StationUserSession(user=user, token=token)

    async def read_auth_token(self) -> str | None:
        record = await self._read_record(AUTH_TOKEN_KEY)
        if not record:
            return None
        token = record.get("token")
        return token if isinstance(token, str) and token else None

    async def read_token(self, scope: TokenScope) -> str | None:
        """Live token lookup used by the HTTP client before every request."""
        if scope is TokenScope.RESOURCE:
            return await self.read_auth_token()
        if scope is TokenScope.SESSION:
            info = await self.read_tenant_info()
            if info is not None and info.session_token:
                return info.session_token
            session = await self.read_tenant_session()
            return session.session_token if session is not None else None
        return None

    async def save_tenant_session(self, session: TenantSession) -> None:
        await self._write_record(SESSION_TOKEN_KEY, session)

    async def save_tenant_info(self, info: TenantInfo, stations: Iterable[Station] = ()) -> None:
        """Persist the station scope.

        ``tenant_info`` carries the station's session token, so the station and
        its token land in a single key write. The tenant session record is
        refreshed afterwards to mirror the same token; a failure there is only
        logged, since ``tenant_info`` is already the record every reader trusts.
        """
        await self._write_record(TENANT_INFO_KEY, info)
        if info.session_token:
            mirror = TenantSession(
                session_token=info.session_token,
                khach_hang=info.khach_hang,
                tram_cans=list(stations),
            )
            try:
                await self._write_record(SESSION_TOKEN_KEY, mirror)
            except StorageError as exc:
                log_action(
                    logger,
                    "session_store",
                    "save_tenant_info",
                    "mirror_failed",
                    level=logging.WARNING,
                    key=exc.key,
                    station_id=info.selected_station.id,
                )

    async def save_station_user(self, session: StationUserSession) -> None:
        await self._write_record(USER_INFO_KEY, session.user)
        await self._write(AUTH_TOKEN_KEY, {"token": session.token})

    async def clear_station_user(self) -> None:
        await self._backend.remove(AUTH_TOKEN_KEY)
        await self._backend.remove(USER_INFO_KEY)

    async def clear_all(self) -> None:
        """Remove every key; every removal is attempted before the first failure is raised."""
        failure: StorageError | None = None
        for key in ALL_KEYS:
            try:
                await self._backend.remove(key)
            except StorageError as exc:
                failure = failure or exc
        if failure is not None:
            raise failure

    async def _write_record(self, key: str, model: BaseModel) -> None:
        await self._write(key, model.model_dump(mode="json", by_alias=True))

    async def _write(self, key: str, payload: dict[str, Any]) -> None:
        body = {_VERSION_FIELD: SCHEMA_VERSION, **payload}
        await self._backend.set(key, json.dumps(body, ensure_ascii=False))

    async def _read_record(self, key: str) -> dict[str, Any] | None:
        try:
            raw = await self._backend.get(key)
        except StorageError as exc:
            self._warn(key, "unreadable", str(exc))
            return None
        if raw is None or raw == "":
            return None
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            if key in _TOKEN_KEYS and _looks_like_token(raw):
                return _upgrade(key, raw)
            self._warn(key, "malformed_json")
            return None
        if not isinstance(decoded, dict):
            if key in _TOKEN_KEYS and isinstance(decoded, str) and _looks_like_token(decoded):
                return _upgrade(key, decoded)
            self._warn(key, "unexpected_shape")
            return None
        version = decoded.get(_VERSION_FIELD, 0)
        if not isinstance(version, int) or version > SCHEMA_VERSION:
            self._warn(key, "unsupported_version", str(version))
            return None
        if version < SCHEMA_VERSION:
            return _upgrade(key, decoded)
        return decoded

    def _validate(self, key: str, model: type[BaseModel], record: dict[str, Any] | None) -> Any:
        if record is None:
            return None
        try:
            return model.model_validate(record)
        except PydanticValidationError:
            self._warn(key, "invalid_record")
            return None

    @staticmethod
    def _warn(key: str, reason: str, detail: str | None = None) -> None:
        log_action(logger, "session_store", "read", reason, level=logging.WARNING, key=key, detail=detail)


def _looks_like_token(value: str) -> bool:
    stripped = value.strip()
    return bool(stripped) and not any(ch.isspace() for ch in stripped) and stripped[0] not in "{["


def _upgrade(key: str, legacy: str | dict[str, Any]) -> dict[str, Any]:
    """Lift a version-0 record to the current layout."""
    if isinstance(legacy, str):
        token = legacy.strip()
        if key == AUTH_TOKEN_KEY:
            return {_VERSION_FIELD: SCHEMA_VERSION, "token": token}
        return {_VERSION_FIELD: SCHEMA_VERSION, "sessionToken": token}
    upgraded = dict(legacy)
    upgraded[_VERSION_FIELD] = SCHEMA_VERSION
    return upgraded
