from __future__ import annotations

import re
from typing import Mapping

MAX_EMAIL_LENGTH = 254
MAX_USER_AGENT_LENGTH = 120

_WHITESPACE = re.compile(r"\s+")


def _header(headers: Mapping[str, str], name: str) -> str:
    # Starlette headers are case-insensitive; plain dicts in tests may not be.
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return (value or "").strip()


def resolve_client_address(headers: Mapping[str, str], peer_host: str | None) -> str | None:
    """
    Pick the client address, most trusted proxy header first:
    CF-Connecting-IP, first X-Forwarded-For hop, X-Real-IP, socket peer.
    """
    cf_ip = _header(headers, "CF-Connecting-IP")
    if cf_ip:
        return cf_ip

    forwarded = _header(headers, "X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = _header(headers, "X-Real-IP")
    if real_ip:
        return real_ip

    peer = (peer_host or "").strip()
    return peer or None


def normalize_email(email: str | None) -> str | None:
    if not email or not isinstance(email, str):
        return None
    value = email.strip().lower()
    if not value:
        return None
    return value[:MAX_EMAIL_LENGTH]


def derive_rate_limit_identifier(
    *,
    user_id: int | str | None = None,
    headers: Mapping[str, str] | None = None,
    peer_host: str | None = None,
    method: str = "",
    path: str = "",
    email: str | None = None,
) -> str:
    """
    Build the rate-limit key for one request. Never raises.

    Authenticated callers are keyed by user and address so one account can't
    exhaust another's budget from a shared NAT. Anonymous callers without any
    address fall back to the submitted email, then to a user-agent fingerprint
    scoped to the route.
    """
    headers = headers or {}
    address = resolve_client_address(headers, peer_host)

    if user_id is not None and str(user_id).strip():
        return f"user:{str(user_id).strip()}:{address or 'unknown'}"

    if address:
        return f"ip:{address}"

    normalized = normalize_email(email)
    if normalized:
        return f"email:{normalized}:unknown"

    user_agent = _WHITESPACE.sub(" ", _header(headers, "User-Agent"))[:MAX_USER_AGENT_LENGTH]
    return f"ua:{user_agent or 'unknown'}:{(method or '').upper()}:{path}"
