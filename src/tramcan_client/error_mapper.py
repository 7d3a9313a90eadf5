from __future__ import annotations

from typing import Mapping

import httpx

from .exceptions import (
    ApiError,
    AuthError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    ServerError,
    ValidationError,
)

_BY_STATUS: dict[int, type[ApiError]] = {
    400: ValidationError,
    401: AuthError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
    429: RateLimitError,
}


def _error_type(status_code: int) -> type[ApiError]:
    if status_code >= 500:
        return ServerError
    return _BY_STATUS.get(status_code, ApiError)


def map_error(status_code: int, payload: Mapping[str, object] | None, trace_id: str | None) -> ApiError:
    """Build the typed error for an HTTP failure; a trace id in the body beats the header's."""
    body = dict(payload or {})
    body_trace = body.get("traceId") or body.get("trace_id")
    return _error_type(status_code)(
        code=str(body.get("code") or "HTTP_ERROR"),
        message=str(body.get("message") or "Request failed"),
        details=body.get("details"),
        trace_id=str(body_trace) if body_trace is not None else trace_id,
        status_code=status_code,
        raw_payload=body,
    )


def error_from_response(response: httpx.Response) -> ApiError:
    fallback_message = response.text or "HTTP request failed"
    try:
        payload = response.json()
    except ValueError:
        payload = {"message": fallback_message}
    if not isinstance(payload, dict):
        payload = {"message": fallback_message, "details": payload}
    trace_id = response.headers.get("X-Trace-ID")
    return map_error(response.status_code, payload, trace_id)
