from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ApiError
from ..http_client import HttpClient
from ..models import ApiEnvelope, TokenScope


@dataclass
class BaseClient:
    http: HttpClient

    async def _call(
        self,
        method: str,
        path: str,
        scope: TokenScope = TokenScope.PUBLIC,
        envelope_on_error: bool | None = None,
        **kwargs: Any,
    ) -> ApiEnvelope:
        # Login endpoints answer bad credentials with a 4xx that still carries the envelope.
        if envelope_on_error is None:
            envelope_on_error = scope is TokenScope.PUBLIC
        data = await self.http.request(method, path, scope=scope, envelope_on_error=envelope_on_error, **kwargs)
        if not isinstance(data, dict) or "success" not in data:
            raise ApiError(
                code="INVALID_RESPONSE",
                message="Response is not a {success, message, data} envelope",
                raw_payload=data,
            )
        try:
            return ApiEnvelope.model_validate(data)
        except PydanticValidationError as exc:
            raise ApiError(
                code="INVALID_RESPONSE",
                message="Malformed response envelope",
                raw_payload=data,
            ) from exc
