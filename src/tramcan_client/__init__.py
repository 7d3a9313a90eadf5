from .config import ClientConfig, ConfigError, load_config
from .controller import AuthController
from .exceptions import (
    ApiError,
    AuthError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    ServerError,
    StorageError,
    TransportError,
    ValidationError,
)
from .http_client import HttpClient
from .models import (
    AuthLevel,
    AuthSnapshot,
    KhachHang,
    Station,
    StationUser,
    TenantInfo,
    TenantSession,
    TokenScope,
)
from .navigation import Route, resolve_initial_route
from .result import Err, ErrorKind, Ok, Result
from .session_store import SessionStore
from .storage import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore

__all__ = [
    "ApiError",
    "AuthController",
    "AuthError",
    "AuthLevel",
    "AuthSnapshot",
    "ClientConfig",
    "ConfigError",
    "ConflictError",
    "Err",
    "ErrorKind",
    "FileKeyValueStore",
    "ForbiddenError",
    "HttpClient",
    "KeyValueStore",
    "KhachHang",
    "MemoryKeyValueStore",
    "NotFoundError",
    "Ok",
    "RateLimitError",
    "Result",
    "Route",
    "ServerError",
    "SessionStore",
    "Station",
    "StationUser",
    "StorageError",
    "TenantInfo",
    "TenantSession",
    "TokenScope",
    "TransportError",
    "ValidationError",
    "load_config",
    "resolve_initial_route",
]
