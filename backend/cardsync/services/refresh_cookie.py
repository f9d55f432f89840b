from __future__ import annotations

from datetime import timedelta

from fastapi import Request, Response

from cardsync.core.config import settings


# -----------------------------
# Refresh token settings
# -----------------------------
def refresh_token_ttl() -> timedelta:
    return timedelta(days=max(1, int(settings.REFRESH_TOKEN_TTL_DAYS)))


def refresh_cookie_max_age_seconds() -> int:
    return int(refresh_token_ttl().total_seconds())


# -----------------------------
# Cookie helpers
# -----------------------------
def cookie_name() -> str:
    return str(settings.REFRESH_COOKIE_NAME or "").strip() or "refresh_token"


def cookie_path() -> str:
    # Scoped to auth endpoints so the refresh token never rides along on sync calls.
    return str(settings.REFRESH_COOKIE_PATH or "").strip() or "/auth"


def cookie_secure() -> bool:
    # Prod => HTTPS => Secure cookies. Dev http://localhost => must be False unless forced.
    return settings.is_prod or settings.REFRESH_COOKIE_SECURE


def cookie_samesite() -> str:
    v = str(settings.REFRESH_COOKIE_SAMESITE or "").lower().strip()
    if v not in {"lax", "strict", "none"}:
        return "strict"
    return v


def set_refresh_cookie(resp: Response, raw_refresh_token: str) -> None:
    resp.set_cookie(
        key=cookie_name(),
        value=raw_refresh_token,
        httponly=True,
        secure=cookie_secure(),
        samesite=cookie_samesite(),
        max_age=refresh_cookie_max_age_seconds(),
        path=cookie_path(),
        domain=settings.REFRESH_COOKIE_DOMAIN,
    )


def clear_refresh_cookie(resp: Response) -> None:
    # Same attributes as set_refresh_cookie or browsers keep the original.
    resp.set_cookie(
        key=cookie_name(),
        value="",
        httponly=True,
        secure=cookie_secure(),
        samesite=cookie_samesite(),
        max_age=0,
        path=cookie_path(),
        domain=settings.REFRESH_COOKIE_DOMAIN,
    )


def read_refresh_cookie(req: Request) -> str | None:
    val = req.cookies.get(cookie_name())
    if not val:
        return None
    val = val.strip()
    return val or None
