from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .config import ClientConfig
from .error_mapper import error_from_response
from .exceptions import ApiError, AuthError, TransportError
from .logger import get_logger, log_action
from .models import TokenScope

TokenProvider = Callable[[TokenScope], Awaitable["str | None"]]
AuthErrorHandler = Callable[[ApiError], "Awaitable[None] | None"]

SESSION_HEADER = "x-session-token"

logger = get_logger("tramcan.http")


async def _no_token(scope: TokenScope) -> str | None:
    return None


def _failed_envelope(response: httpx.Response) -> dict[str, Any] | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("success") is False:
        return payload
    return None


class HttpClient:
    """Async JSON client that injects the live token for each request.

    A 401 on a token-bearing request is reported once to the registered auth
    error handler. The request is re-sent at most one time, and only when the
    handler left a different token behind; everything else propagates.
    """

    def __init__(
        self,
        config: ClientConfig,
        token_provider: TokenProvider | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._token_provider = token_provider or _no_token
        self._client = client or httpx.AsyncClient(
            base_url=f"{config.api_base_url}/",
            timeout=config.timeout_seconds,
            verify=config.verify_ssl,
        )
        self._auth_error_handler: AuthErrorHandler | None = None

    def set_token_provider(self, provider: TokenProvider) -> None:
        self._token_provider = provider

    def register_auth_error_handler(self, handler: AuthErrorHandler | None) -> None:
        self._auth_error_handler = handler

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        scope: TokenScope = TokenScope.PUBLIC,
        token: str | None = None,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        envelope_on_error: bool = False,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        With ``envelope_on_error`` an error response whose body is a
        ``success: false`` envelope is returned as data instead of raised, and
        the auth error handler is not consulted.
        """
        normalized_method = method.upper()
        normalized_path = path.lstrip("/")
        retried = False

        while True:
            sent_token = token if token is not None else await self._read_token(scope)
            if scope is not TokenScope.PUBLIC and not sent_token:
                log_action(logger, "http", "request", "missing_token", scope=scope.value, path=path)
                raise AuthError(
                    code="AUTH_REQUIRED",
                    message="Not signed in for this request",
                    status_code=401,
                )

            request_headers = {"Accept": "application/json", **(headers or {})}
            if sent_token:
                request_headers["Authorization"] = f"Bearer {sent_token}"
                if scope is TokenScope.SESSION:
                    request_headers[SESSION_HEADER] = sent_token

            response = await self._send(normalized_method, normalized_path, request_headers, json_body, params)

            if envelope_on_error and response.status_code >= 400:
                rejection = _failed_envelope(response)
                if rejection is not None:
                    log_action(logger, "http", "request", "rejected", path=path, status_code=response.status_code)
                    return rejection

            if response.status_code == 401 and scope is not TokenScope.PUBLIC:
                error = error_from_response(response)
                if retried:
                    log_action(logger, "http", "unauthorized", "gave_up", level=logging.WARNING, path=path)
                    raise error
                retried = True
                await self._notify_auth_error(error)
                if token is not None:
                    raise error
                fresh_token = await self._read_token(scope)
                if not fresh_token or fresh_token == sent_token:
                    log_action(logger, "http", "unauthorized", "propagated", level=logging.WARNING, path=path)
                    raise error
                log_action(logger, "http", "unauthorized", "retry_once", path=path)
                continue

            if response.status_code >= 400:
                raise error_from_response(response)
            return self._parse(response)

    async def _read_token(self, scope: TokenScope) -> str | None:
        if scope is TokenScope.PUBLIC:
            return None
        return await self._token_provider(scope)

    async def _send(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        json_body: dict[str, Any] | None,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                path,
                headers=headers,
                json=json_body,
                params=params,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(
                code="TIMEOUT_ERROR",
                message="The server did not answer in time",
                details={"type": type(exc).__name__},
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                code="NETWORK_ERROR",
                message="Could not reach the server",
                details={"type": type(exc).__name__, "error": str(exc)},
            ) from exc

    async def _notify_auth_error(self, error: ApiError) -> None:
        if self._auth_error_handler is None:
            return
        outcome = self._auth_error_handler(error)
        if inspect.isawaitable(outcome):
            await outcome

    @staticmethod
    def _parse(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                code="INVALID_RESPONSE",
                message="The server answered with a body that is not JSON",
                status_code=response.status_code,
            ) from exc
