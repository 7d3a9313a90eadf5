from .auth import AuthClient
from .base import BaseClient
from .stations import StationsClient

__all__ = ["AuthClient", "BaseClient", "StationsClient"]
