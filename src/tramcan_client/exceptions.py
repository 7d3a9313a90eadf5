from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ApiError(Exception):
    code: str
    message: str
    details: object | None = None
    trace_id: str | None = None
    status_code: int | None = None
    raw_payload: object | None = None

    def __str__(self) -> str:
        status = f"[{self.status_code}] " if self.status_code is not None else ""
        trace = f" trace_id={self.trace_id}" if self.trace_id else ""
        return f"{status}{self.code}: {self.message}{trace}"


class AuthError(ApiError):
    """Authentication failed or the session is no longer accepted (401)."""


class ForbiddenError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


class ValidationError(ApiError):
    pass


class ConflictError(ApiError):
    """409 or conflict-style errors."""


class RateLimitError(ApiError):
    """429 throttling error."""


class ServerError(ApiError):
    """5xx server-side failures."""


class TransportError(ApiError):
    """Network/transport failure before an HTTP response was returned."""


class StorageError(Exception):
    """The on-device key-value store could not be read or written."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"{key}: {message}")
        self.key = key
        self.message = message
