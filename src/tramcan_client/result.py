from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

from .exceptions import ApiError, AuthError

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"
    UNAUTHORIZED = "unauthorized"
    BUSY = "busy"
    STALE = "stale"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    code: str | None = None
    trace_id: str | None = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def result_from_error(exc: ApiError) -> Err:
    """Collapse a transport-level exception into the failure shape screens render."""
    # Timeouts and non-401 HTTP errors share one shape; only 401 is distinct.
    kind = ErrorKind.UNAUTHORIZED if isinstance(exc, AuthError) else ErrorKind.UNREACHABLE
    message = exc.message.strip() or "Request failed"
    return Err(kind=kind, message=message, code=exc.code, trace_id=exc.trace_id)
