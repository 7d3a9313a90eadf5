"""Auth controller: the three-tier sign-in state machine.

Screens call the public coroutines and render the returned ``Result``; they
never see exceptions for expected failures. Mutating operations are serialized
through one lock and run as shielded tasks, so a screen that stops waiting does
not interrupt a half-finished persistence sequence.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .clients import AuthClient, StationsClient
from .config import ClientConfig
from .exceptions import ApiError, StorageError
from .http_client import HttpClient
from .logger import get_logger, log_action
from .models import (
    ApiEnvelope,
    AuthLevel,
    AuthSnapshot,
    KhachHang,
    Station,
    StationUser,
    TenantInfo,
    TenantSession,
    TokenScope,
)
from .normalizers import (
    PayloadShapeError,
    normalize_khach_hang,
    normalize_station_listing,
    normalize_station_selection,
    normalize_tenant_login,
    normalize_user_login,
)
from .result import Err, ErrorKind, Ok, Result, result_from_error
from .session_store import SessionStore
from .storage import FileKeyValueStore, KeyValueStore

Listener = Callable[[AuthSnapshot], None]

NOT_AVAILABLE = "N/A"

logger = get_logger("tramcan.auth")


def _invalid_response(exc: PayloadShapeError) -> Err:
    return Err(kind=ErrorKind.UNREACHABLE, message=str(exc), code="INVALID_RESPONSE")


def _rejected(envelope: ApiEnvelope, fallback: str) -> Err:
    return Err(kind=ErrorKind.REJECTED, message=envelope.message.strip() or fallback)


class AuthController:
    def __init__(
        self,
        store: SessionStore,
        http: HttpClient,
        auth_client: AuthClient | None = None,
        stations_client: StationsClient | None = None,
    ) -> None:
        self._store = store
        self._http = http
        self._auth = auth_client or AuthClient(http=http)
        self._stations_api = stations_client or StationsClient(http=http)
        http.set_token_provider(store.read_token)
        http.register_auth_error_handler(self._on_unauthorized)

        self._lock = asyncio.Lock()
        self._queued = 0
        self._listeners: list[Listener] = []
        self._auth_level = AuthLevel.NONE
        self._tenant_info: TenantInfo | None = None
        self._tenant_session: TenantSession | None = None
        self._station_user: StationUser | None = None
        self._stations: tuple[Station, ...] = ()
        self._token_expired = False
        self._is_loading = False

    @classmethod
    def from_config(cls, config: ClientConfig, backend: KeyValueStore | None = None) -> AuthController:
        backend = backend or FileKeyValueStore(app_name=config.app_name, directory=config.storage_dir)
        return cls(SessionStore(backend), HttpClient(config))

    @property
    def http(self) -> HttpClient:
        """Client for resource calls made by screens; it shares this controller's tokens."""
        return self._http

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- observable state -------------------------------------------------

    @property
    def auth_level(self) -> AuthLevel:
        return self._auth_level

    @property
    def tenant_info(self) -> TenantInfo | None:
        return self._tenant_info

    @property
    def tenant_session_data(self) -> TenantSession | None:
        return self._tenant_session

    @property
    def station_user(self) -> StationUser | None:
        return self._station_user

    @property
    def stations(self) -> tuple[Station, ...]:
        return self._stations

    @property
    def token_expired(self) -> bool:
        return self._token_expired

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    def snapshot(self) -> AuthSnapshot:
        return AuthSnapshot(
            auth_level=self._auth_level,
            tenant_info=self._tenant_info,
            tenant_session=self._tenant_session,
            station_user=self._station_user,
            stations=self._stations,
            token_expired=self._token_expired,
            is_loading=self._is_loading,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_station_display_name(self) -> str:
        if self._tenant_info is None:
            return NOT_AVAILABLE
        return self._tenant_info.selected_station.ten_tram_can or NOT_AVAILABLE

    def get_tenant_display_name(self) -> str:
        khach_hang = self._current_khach_hang()
        if khach_hang is None:
            return NOT_AVAILABLE
        return khach_hang.ten_khach_hang or NOT_AVAILABLE

    def acknowledge_token_expired(self) -> None:
        if self._token_expired:
            self._token_expired = False
            self._notify()

    # -- startup ----------------------------------------------------------

    async def restore(self, revalidate: bool = True) -> AuthSnapshot:
        """Rebuild state from storage, optionally confirming the session with the server.

        An unreachable server keeps the locally restored level; a server that
        answers that the session is gone demotes to ``NONE``.
        """
        await self._wait_turn()
        try:
            self._set_loading(True)
            state = await self._store.load_on_startup()
            self._auth_level = state.auth_level
            self._tenant_info = state.tenant_info
            self._tenant_session = state.tenant_session if state.auth_level is AuthLevel.TENANT else None
            self._station_user = state.station_user.user if state.station_user is not None else None
            # At station level only the mirrored session record knows the list; it may be empty.
            self._stations = tuple(state.tenant_session.tram_cans) if state.tenant_session is not None else ()
            self._token_expired = False
            if revalidate and self._auth_level is not AuthLevel.NONE:
                await self._revalidate()
        finally:
            self._is_loading = False
            self._lock.release()
        log_action(
            logger,
            "auth",
            "restore",
            self._auth_level.value,
            tenant=self._tenant_code(),
            station_id=self._selected_station_id(),
            known_stations=len(self._stations),
        )
        self._notify()
        return self.snapshot()

    async def _revalidate(self) -> None:
        token = await self._store.read_token(TokenScope.SESSION)
        if not token:
            return
        try:
            envelope = await self._auth.validate_session(token)
        except ApiError as exc:
            log_action(logger, "auth", "revalidate", "offline", level=logging.WARNING, code=exc.code)
            return
        if not envelope.success or envelope.data is None:
            log_action(logger, "auth", "revalidate", "session_invalid", tenant=self._tenant_code())
            await self._clear_storage("revalidate")
            self._reset()
            return
        if self._tenant_session is not None and self._tenant_session.khach_hang is None:
            try:
                khach_hang = normalize_khach_hang(envelope.data)
            except PayloadShapeError:
                return
            self._tenant_session = self._tenant_session.model_copy(update={"khach_hang": khach_hang})

    # -- tier 1: tenant -----------------------------------------------------

    async def tenant_login(self, ma_khach_hang: str, password: str) -> Result[TenantSession]:
        code = (ma_khach_hang or "").strip()
        if not code or not password:
            return Err(kind=ErrorKind.VALIDATION, message="Customer code and password are required")

        async def operation() -> Result[TenantSession]:
            try:
                envelope = await self._auth.tenant_login(code, password)
            except ApiError as exc:
                return self._failed("tenant_login", exc, tenant=code)
            if not envelope.success:
                log_action(logger, "auth", "tenant_login", "rejected", tenant=code)
                return _rejected(envelope, "Tenant login failed")
            try:
                session = normalize_tenant_login(envelope.data)
            except PayloadShapeError as exc:
                return _invalid_response(exc)
            if session.khach_hang is None:
                session = session.model_copy(update={"khach_hang": KhachHang(ma_khach_hang=code)})

            await self._store.clear_all()
            await self._store.save_tenant_session(session)
            self._auth_level = AuthLevel.TENANT
            self._tenant_session = session
            self._tenant_info = None
            self._station_user = None
            self._stations = tuple(session.tram_cans)
            self._token_expired = False
            log_action(logger, "auth", "tenant_login", "ok", tenant=code, stations=len(self._stations))
            return Ok(session)

        return await self._exclusive("tenant_login", operation)

    # -- tier 2: station ----------------------------------------------------

    async def select_station(self, session_token: str, station_id: int, is_activated: bool = False) -> Result[None]:
        if not session_token:
            return Err(kind=ErrorKind.VALIDATION, message="A tenant session token is required")
        if self._auth_level is AuthLevel.NONE:
            return Err(kind=ErrorKind.VALIDATION, message="Sign in as a tenant before choosing a station")

        async def operation() -> Result[None]:
            membership = await self._check_membership("select_station", station_id)
            if membership is not None:
                return membership
            try:
                envelope = await self._auth.select_station(session_token, station_id, is_activated)
            except ApiError as exc:
                return self._failed("select_station", exc, station_id=station_id)
            if not envelope.success:
                log_action(logger, "auth", "select_station", "rejected", tenant=self._tenant_code(), station_id=station_id)
                return _rejected(envelope, "Station selection failed")
            try:
                info = normalize_station_selection(
                    envelope.data,
                    fallback_khach_hang=self._current_khach_hang(),
                    fallback_station=self._known_station(station_id),
                    requested_id=station_id,
                )
            except PayloadShapeError as exc:
                return _invalid_response(exc)

            await self._enter_station(info)
            log_action(logger, "auth", "select_station", "ok", tenant=self._tenant_code(), station_id=station_id)
            return Ok(None)

        return await self._exclusive("select_station", operation)

    async def switch_station(self, station_id: int, is_activated: bool = False) -> Result[None]:
        """Move to another station of the same tenant without a new tenant login.

        The new token and station are persisted before this returns, so the very
        next request is already scoped to the new station. On any failure the
        persisted session is left untouched.
        """
        if self._auth_level is not AuthLevel.STATION or self._tenant_info is None:
            return Err(kind=ErrorKind.VALIDATION, message="No station is selected yet")
        if station_id == self._tenant_info.selected_station.id:
            return Ok(None)

        async def operation() -> Result[None]:
            membership = await self._check_membership("switch_station", station_id)
            if membership is not None:
                return membership
            try:
                envelope = await self._stations_api.switch_station(station_id, is_activated)
            except ApiError as exc:
                return self._failed("switch_station", exc, station_id=station_id)
            if not envelope.success:
                log_action(logger, "auth", "switch_station", "rejected", tenant=self._tenant_code(), station_id=station_id)
                return _rejected(envelope, "Station switch failed")
            try:
                info = normalize_station_selection(
                    envelope.data,
                    fallback_khach_hang=self._current_khach_hang(),
                    fallback_station=self._known_station(station_id),
                    requested_id=station_id,
                )
            except PayloadShapeError as exc:
                return _invalid_response(exc)

            previous = self._selected_station_id()
            await self._enter_station(info)
            log_action(
                logger,
                "auth",
                "switch_station",
                "ok",
                tenant=self._tenant_code(),
                station_id=station_id,
                previous_station_id=previous,
            )
            return Ok(None)

        return await self._exclusive("switch_station", operation)

    async def get_my_stations(self) -> Result[list[Station]]:
        if self._auth_level is AuthLevel.NONE:
            return Err(kind=ErrorKind.VALIDATION, message="Sign in as a tenant first")
        return await self._fetch_stations()

    async def validate_current_station(self) -> Result[Station]:
        """Check that the selected station is still offered to this tenant. Never changes state."""
        if self._auth_level is not AuthLevel.STATION or self._tenant_info is None:
            return Err(kind=ErrorKind.VALIDATION, message="No station is selected")
        selected_id = self._tenant_info.selected_station.id
        fetched = await self._fetch_stations()
        if isinstance(fetched, Err):
            return fetched
        for station in fetched.value:
            if station.id == selected_id:
                return Ok(station)
        log_action(logger, "auth", "validate_station", "stale", tenant=self._tenant_code(), station_id=selected_id)
        return Err(
            kind=ErrorKind.STALE,
            message="The selected station is no longer available",
            code="STATION_REVOKED",
        )

    async def validate_session(self) -> Result[bool]:
        token = await self._store.read_token(TokenScope.SESSION)
        if not token:
            return Ok(False)
        try:
            envelope = await self._auth.validate_session(token)
        except ApiError as exc:
            return self._failed("validate_session", exc)
        return Ok(envelope.success and envelope.data is not None)

    # -- tier 3: station user ----------------------------------------------

    async def station_user_login(self, nv_id: str, password: str) -> Result[None]:
        user_id = (nv_id or "").strip()
        if not user_id or not password:
            return Err(kind=ErrorKind.VALIDATION, message="User id and password are required")
        if self._auth_level is not AuthLevel.STATION:
            return Err(kind=ErrorKind.VALIDATION, message="Select a station before signing in a station user")

        async def operation() -> Result[None]:
            try:
                envelope = await self._auth.station_user_login(user_id, password)
            except ApiError as exc:
                return self._failed("station_user_login", exc, station_id=self._selected_station_id())
            if not envelope.success:
                log_action(
                    logger,
                    "auth",
                    "station_user_login",
                    "rejected",
                    tenant=self._tenant_code(),
                    station_id=self._selected_station_id(),
                )
                return _rejected(envelope, "Station user login failed")
            try:
                session = normalize_user_login(envelope.data)
            except PayloadShapeError as exc:
                return _invalid_response(exc)

            await self._store.save_station_user(session)
            self._station_user = session.user
            self._token_expired = False
            log_action(
                logger,
                "auth",
                "station_user_login",
                "ok",
                tenant=self._tenant_code(),
                station_id=self._selected_station_id(),
                nv_id=session.user.nv_id,
            )
            return Ok(None)

        return await self._exclusive("station_user_login", operation)

    async def login(self, username: str, password: str) -> Result[StationUser]:
        """Generic resource login; its token lives beside the tenant session, not in place of it."""
        name = (username or "").strip()
        if not name or not password:
            return Err(kind=ErrorKind.VALIDATION, message="Username and password are required")

        async def operation() -> Result[StationUser]:
            try:
                envelope = await self._auth.login(name, password)
            except ApiError as exc:
                return self._failed("login", exc)
            if not envelope.success:
                log_action(logger, "auth", "login", "rejected")
                return _rejected(envelope, "Login failed")
            try:
                session = normalize_user_login(envelope.data)
            except PayloadShapeError as exc:
                return _invalid_response(exc)

            await self._store.save_station_user(session)
            self._station_user = session.user
            self._token_expired = False
            log_action(logger, "auth", "login", "ok", nv_id=session.user.nv_id)
            return Ok(session.user)

        return await self._exclusive("login", operation)

    async def logout_station_user(self) -> Result[None]:
        async def operation() -> Result[None]:
            await self._clear_station_user("logout_station_user")
            log_action(logger, "auth", "logout_station_user", "ok", station_id=self._selected_station_id())
            return Ok(None)

        return await self._exclusive("logout_station_user", operation)

    async def logout(self) -> None:
        """Drop every tier. Waits for an in-flight operation and never fails."""

        async def operation() -> None:
            token = await self._store.read_token(TokenScope.SESSION)
            if token:
                try:
                    await self._auth.logout(token)
                except ApiError as exc:
                    log_action(logger, "auth", "server_logout", "failed", level=logging.WARNING, code=exc.code)
            await self._clear_storage("logout")
            tenant = self._tenant_code()
            self._reset()
            log_action(logger, "auth", "logout", "ok", tenant=tenant)

        task = asyncio.ensure_future(self._run_serialized(operation))
        await asyncio.shield(task)

    # -- 401 path -----------------------------------------------------------

    async def _on_unauthorized(self, error: ApiError) -> None:
        # Runs inside a request that may itself hold the lock, so it must not take it.
        log_action(
            logger,
            "auth",
            "unauthorized",
            "token_cleared",
            level=logging.WARNING,
            tenant=self._tenant_code(),
            station_id=self._selected_station_id(),
            code=error.code,
        )
        await self._clear_station_user("unauthorized")
        self._token_expired = True
        self._notify()

    # -- internals ----------------------------------------------------------

    async def _exclusive(self, action: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        # A released lock still belongs to whoever is queued on it (logout, restore).
        if self._lock.locked() or self._queued:
            log_action(logger, "auth", action, "busy", level=logging.WARNING)
            return Err(kind=ErrorKind.BUSY, message="Another sign-in operation is still running")
        # Unlocked with nobody queued: this acquire completes without suspending.
        await self._lock.acquire()
        task = asyncio.ensure_future(self._run_and_release(operation))
        return await asyncio.shield(task)

    async def _run_and_release(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            self._set_loading(True)
            return await operation()
        finally:
            self._is_loading = False
            self._lock.release()
            self._notify()

    async def _run_serialized(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        await self._wait_turn()
        try:
            self._set_loading(True)
            return await operation()
        finally:
            self._is_loading = False
            self._lock.release()
            self._notify()

    async def _wait_turn(self) -> None:
        self._queued += 1
        try:
            await self._lock.acquire()
        finally:
            self._queued -= 1

    async def _check_membership(self, action: str, station_id: int) -> Err | None:
        if not self._stations:
            fetched = await self._fetch_stations()
            if isinstance(fetched, Err):
                return fetched
        if any(station.id == station_id for station in self._stations):
            return None
        log_action(logger, "auth", action, "unknown_station", tenant=self._tenant_code(), station_id=station_id)
        return Err(
            kind=ErrorKind.VALIDATION,
            message=f"Station {station_id} is not available for this tenant",
            code="STATION_NOT_LISTED",
        )

    async def _fetch_stations(self) -> Result[list[Station]]:
        try:
            envelope = await self._stations_api.get_my_stations()
        except ApiError as exc:
            return self._failed("get_my_stations", exc)
        if not envelope.success:
            return _rejected(envelope, "Could not load stations")
        stations = normalize_station_listing(envelope.data)
        self._stations = tuple(stations)
        if self._tenant_session is not None:
            self._tenant_session = self._tenant_session.model_copy(update={"tram_cans": list(stations)})
        log_action(logger, "auth", "get_my_stations", "ok", tenant=self._tenant_code(), stations=len(stations))
        self._notify()
        return Ok(stations)

    async def _enter_station(self, info: TenantInfo) -> None:
        await self._store.save_tenant_info(info, self._stations)
        self._auth_level = AuthLevel.STATION
        self._tenant_info = info
        self._tenant_session = None
        # Station-user tokens are scoped to one station.
        await self._clear_station_user("station_changed")

    async def _clear_station_user(self, reason: str) -> None:
        self._station_user = None
        try:
            await self._store.clear_station_user()
        except StorageError as exc:
            log_action(logger, "auth", reason, "storage_error", level=logging.WARNING, key=exc.key)

    async def _clear_storage(self, reason: str) -> None:
        try:
            await self._store.clear_all()
        except StorageError as exc:
            log_action(logger, "auth", reason, "storage_error", level=logging.WARNING, key=exc.key)

    def _reset(self) -> None:
        self._auth_level = AuthLevel.NONE
        self._tenant_info = None
        self._tenant_session = None
        self._station_user = None
        self._stations = ()
        self._token_expired = False

    def _failed(self, action: str, exc: ApiError, station_id: int | None = None, tenant: str | None = None) -> Err:
        log_action(
            logger,
            "auth",
            action,
            "error",
            level=logging.WARNING,
            tenant=tenant or self._tenant_code(),
            station_id=station_id,
            code=exc.code,
            status_code=exc.status_code,
        )
        return result_from_error(exc)

    def _set_loading(self, value: bool) -> None:
        self._is_loading = value
        self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                log_action(logger, "auth", "notify", "listener_error", level=logging.ERROR, error=str(exc))

    def _current_khach_hang(self) -> KhachHang | None:
        if self._tenant_info is not None:
            return self._tenant_info.khach_hang
        if self._tenant_session is not None:
            return self._tenant_session.khach_hang
        return None

    def _tenant_code(self) -> str | None:
        khach_hang = self._current_khach_hang()
        return khach_hang.ma_khach_hang if khach_hang is not None else None

    def _known_station(self, station_id: int) -> Station | None:
        return next((station for station in self._stations if station.id == station_id), None)

    def _selected_station_id(self) -> int | None:
        return self._tenant_info.selected_station.id if self._tenant_info is not None else None
