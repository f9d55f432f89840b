from __future__ import annotations

import logging
from urllib.parse import urlsplit

from fastapi import Request

from cardsync.core.config import settings
from cardsync.core.errors import ForbiddenError

logger = logging.getLogger(__name__)

PROTECTED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_DEV_HOSTS = frozenset({"localhost", "127.0.0.1"})


def normalize_origin(value: str | None) -> str | None:
    """Return ``scheme://host[:port]`` for http(s) URLs, else None ("null", extension schemes, junk)."""
    if not value:
        return None
    value = value.strip()
    if not value or value.lower() == "null":
        return None
    try:
        parts = urlsplit(value)
    except ValueError:
        return None
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def is_origin_allowed(origin: str, allowed: list[str], *, is_dev: bool = False) -> bool:
    if is_dev and (urlsplit(origin).hostname or "") in _DEV_HOSTS:
        return True
    return origin in {normalize_origin(a) for a in allowed}


async def require_trusted_origin(request: Request) -> None:
    """
    Allow-list check for state-changing requests.

    Origin is preferred; Referer is the fallback. Requests carrying neither
    (non-browser clients) pass through.
    """
    if request.method not in PROTECTED_METHODS:
        return

    origin = normalize_origin(request.headers.get("origin")) or normalize_origin(request.headers.get("referer"))
    if origin is None:
        return

    if not is_origin_allowed(origin, settings.CORS_ORIGINS, is_dev=not settings.is_prod):
        logger.warning("Rejected request from untrusted origin: %s %s origin=%s", request.method, request.url.path, origin)
        raise ForbiddenError()
