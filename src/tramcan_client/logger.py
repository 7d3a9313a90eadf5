from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

_SECRET_KEYS = {
    "password",
    "token",
    "auth_token",
    "session_token",
    "sessiontoken",
    "authorization",
    "x-session-token",
}


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger


def redact(context: dict[str, Any] | None) -> dict[str, Any]:
    if not context:
        return {}
    return {key: value for key, value in context.items() if key.lower() not in _SECRET_KEYS}


def log_action(
    logger: logging.Logger,
    module: str,
    action: str,
    outcome: str,
    tenant: str | None = None,
    station_id: int | None = None,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    payload: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": logging.getLevelName(level),
        "module": module,
        "action": action,
        "tenant": tenant,
        "station_id": station_id,
        "outcome": outcome,
    }
    payload.update(redact(context))
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
