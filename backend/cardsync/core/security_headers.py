from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from cardsync.core.config import settings

API_CONTENT_SECURITY_POLICY = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'; form-action 'none'"
HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Hardening headers on every response, error responses included. HSTS only in prod."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=(), payment=()"
        # A route may set its own CSP.
        response.headers.setdefault("Content-Security-Policy", API_CONTENT_SECURITY_POLICY)

        if settings.is_prod:
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response
