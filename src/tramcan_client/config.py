from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ClientConfig:
    env_name: str
    api_base_url: str
    timeout_seconds: float = 10.0
    verify_ssl: bool = True
    app_name: str = "tramcan"
    storage_dir: str | None = None

    @property
    def normalized_env(self) -> str:
        return self.env_name.lower().strip()


def _env(name: str) -> str:
    return (os.getenv(name) or "").strip()


def _flag(name: str, default: bool) -> bool:
    value = _env(name).lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return default


def _timeout(name: str = "TRAMCAN_TIMEOUT_SECONDS") -> float:
    raw = _env(name) or "10"
    try:
        seconds = float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {name}: expected a number, got {raw!r}") from exc
    if seconds <= 0:
        raise ConfigError(f"Invalid {name}: expected > 0, got {seconds}")
    return seconds


def load_config(env_file: str | None = None) -> ClientConfig:
    """Read ``TRAMCAN_*`` settings; a ``.env`` file fills in what the environment lacks.

    ``TRAMCAN_API_BASE_URL_<ENV>`` beats the generic base URL for the active profile.
    """
    load_dotenv(env_file)

    env_name = _env("TRAMCAN_ENV") or "dev"
    api_base_url = _env(f"TRAMCAN_API_BASE_URL_{env_name.upper()}") or _env("TRAMCAN_API_BASE_URL")
    if not api_base_url:
        raise ConfigError("TRAMCAN_API_BASE_URL is not set")

    return ClientConfig(
        env_name=env_name,
        api_base_url=api_base_url.rstrip("/"),
        timeout_seconds=_timeout(),
        verify_ssl=_flag("TRAMCAN_VERIFY_SSL", True),
        app_name=_env("TRAMCAN_APP_NAME") or "tramcan",
        storage_dir=_env("TRAMCAN_STORAGE_DIR") or None,
    )
