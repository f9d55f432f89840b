# cardsync/core/errors.py
"""
Domain error taxonomy.

Services raise these; the exception handlers in main.py render them with the
standard {"error", "message", "details"?} shape. Authentication failures always
carry a generic message so nothing about *why* crosses the trust boundary.
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    public_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)

    def details(self) -> dict[str, Any] | None:
        return None

    def headers(self) -> dict[str, str] | None:
        return None

    def body(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error_code, "message": self.public_message}
        details = self.details()
        if details:
            payload["details"] = details
        return payload


class UnauthorizedError(AppError):
    """Missing/invalid/expired/revoked credentials. The message stays generic."""

    status_code = 401
    error_code = "UNAUTHORIZED"
    public_message = "Invalid credentials"

    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class ReuseDetectedError(UnauthorizedError):
    """A rotated or revoked refresh token was presented again."""

    def __init__(self, message: str | None = None, *, family_id: str | None = None) -> None:
        super().__init__(message)
        self.family_id = family_id


class ForbiddenError(AppError):
    status_code = 403
    error_code = "FORBIDDEN"
    public_message = "Forbidden"


class RegistrationError(AppError):
    """Registration refused. Duplicate emails get the same answer as bad input."""

    status_code = 400
    error_code = "VALIDATION_ERROR"
    public_message = "Registration failed"


class PayloadTooLargeError(AppError):
    status_code = 413
    error_code = "PAYLOAD_TOO_LARGE"
    public_message = "Request payload too large"

    def __init__(self, max_bytes: int) -> None:
        super().__init__()
        self.max_bytes = max_bytes

    def details(self) -> dict[str, Any] | None:
        return {"max_bytes": self.max_bytes}


class RateLimitedError(AppError):
    status_code = 429
    error_code = "RATE_LIMITED"
    public_message = "Rate limit exceeded. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after_seconds: int,
        limit: int,
        remaining: int = 0,
        reset_epoch: int | None = None,
    ) -> None:
        super().__init__(message)
        if message:
            self.public_message = message
        self.retry_after_seconds = max(1, int(retry_after_seconds))
        self.limit = limit
        self.remaining = max(0, remaining)
        self.reset_epoch = reset_epoch

    def details(self) -> dict[str, Any] | None:
        return {"retry_after_seconds": self.retry_after_seconds}

    def headers(self) -> dict[str, str] | None:
        headers = {
            "Retry-After": str(self.retry_after_seconds),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if self.reset_epoch is not None:
            headers["X-RateLimit-Reset"] = str(self.reset_epoch)
        return headers


class VersionConflictError(AppError):
    status_code = 409
    error_code = "CONFLICT"
    public_message = "Version conflict"

    def __init__(self, current_version: int) -> None:
        super().__init__()
        self.current_version = current_version

    def body(self) -> dict[str, Any]:
        # Clients re-merge against this version and retry with a higher one.
        return {
            "error": self.error_code,
            "message": self.public_message,
            "currentVersion": self.current_version,
        }


class InternalFailure(AppError):
    """Storage or configuration failure. Logged server side, rendered as a bare 500."""
