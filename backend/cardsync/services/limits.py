from __future__ import annotations

from dataclasses import dataclass, replace

from cardsync.core.config import settings


@dataclass(frozen=True)
class ProgressiveDelay:
    base_seconds: float
    max_seconds: float
    factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """
        delay(n) = 0 for n <= 1, else min(max, base * factor ** (n - 1)).

        ``attempt`` is the number of attempts already consumed in the current
        window, not counting the one about to be processed.
        """
        if attempt <= 1:
            return 0.0
        # Cap the exponent so huge attempt counts can't overflow before min() applies.
        exponent = min(attempt - 1, 64)
        return float(min(self.max_seconds, self.base_seconds * (self.factor ** exponent)))


@dataclass(frozen=True)
class RateLimitConfig:
    max_attempts: int
    window_seconds: int
    block_seconds: int = 0
    progressive_delay: ProgressiveDelay | None = None


LOGIN = "login"
REGISTER = "register"
REFRESH = "refresh"
SYNC_READ = "sync_read"
SYNC_WRITE = "sync_write"
LOGOUT = "logout"
DEVICES = "devices"
ADMIN = "admin"

DEFAULT_POLICIES: dict[str, RateLimitConfig] = {
    # Strict: credential stuffing.
    LOGIN: RateLimitConfig(
        max_attempts=5,
        window_seconds=15 * 60,
        block_seconds=60 * 60,
        progressive_delay=ProgressiveDelay(base_seconds=0.2, max_seconds=5.0, factor=2.0),
    ),
    # Account enumeration and spam.
    REGISTER: RateLimitConfig(max_attempts=3, window_seconds=60 * 60, block_seconds=24 * 60 * 60),
    REFRESH: RateLimitConfig(max_attempts=30, window_seconds=60),
    SYNC_READ: RateLimitConfig(max_attempts=100, window_seconds=60 * 60),
    SYNC_WRITE: RateLimitConfig(max_attempts=100, window_seconds=60 * 60),
    LOGOUT: RateLimitConfig(max_attempts=10, window_seconds=60),
    DEVICES: RateLimitConfig(max_attempts=10, window_seconds=60),
    ADMIN: RateLimitConfig(max_attempts=10, window_seconds=60),
}

_ERROR_MESSAGES: dict[str, str] = {
    LOGIN: "Too many login attempts. Please try again later.",
    REGISTER: "Too many registration attempts. Please try again later.",
    REFRESH: "Rate limit exceeded. Please wait before refreshing again.",
    SYNC_READ: "Rate limit exceeded. Please wait before syncing again.",
    SYNC_WRITE: "Rate limit exceeded. Please wait before syncing again.",
    LOGOUT: "Rate limit exceeded. Please wait before logging out again.",
    DEVICES: "Rate limit exceeded. Please wait before managing devices again.",
    ADMIN: "Admin rate limit exceeded. Please wait before retrying.",
}

DEFAULT_ERROR_MESSAGE = "Rate limit exceeded. Please try again later."


def get_policy(limit_type: str) -> RateLimitConfig:
    config = DEFAULT_POLICIES[limit_type]
    if limit_type == LOGIN and config.progressive_delay is not None:
        return replace(
            config,
            progressive_delay=ProgressiveDelay(
                base_seconds=max(0, settings.LOGIN_DELAY_BASE_MS) / 1000.0,
                max_seconds=max(0, settings.LOGIN_DELAY_MAX_MS) / 1000.0,
                factor=settings.LOGIN_DELAY_FACTOR,
            ),
        )
    return config


def rate_limit_message(limit_type: str) -> str:
    # Same wording whether or not the identifier maps to a real account.
    return _ERROR_MESSAGES.get(limit_type, DEFAULT_ERROR_MESSAGE)
