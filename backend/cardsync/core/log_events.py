from __future__ import annotations

import json
import logging
from typing import Any

_REDACT_KEYS = frozenset(
    [
        "password",
        "password_hash",
        "token",
        "refresh_token",
        "access_token",
        "jwt",
        "secret",
        "key",
        "api_key",
    ]
)


def _sanitize(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in _REDACT_KEYS else _sanitize(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_sanitize(v) for v in value]
    return value


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one compact JSON line for a security-relevant event."""
    payload = {"event": event, **_sanitize(fields)}
    try:
        logger.log(level, json.dumps(payload, separators=(",", ":"), default=str))
    except (TypeError, ValueError):  # pragma: no cover
        logger.exception("Failed to emit %s event", event)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
