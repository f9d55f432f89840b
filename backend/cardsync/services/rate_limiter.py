from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

import boto3
from sqlalchemy.orm import sessionmaker

from cardsync.core.config import Settings
from cardsync.core.security import keyed_hash
from cardsync.services.limits import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int
    limit: int
    remaining: int
    count: int
    window_reset_epoch: int
    limiter_key: str
    window_seconds: int
    blocked: bool = False


@dataclass(frozen=True)
class CounterState:
    """What a store reports after recording (or refusing to record) one hit."""

    count: int
    window_reset_epoch: int
    blocked_until: int | None = None


class RateLimitStore(Protocol):
    # False for stores that cannot report consumed points (no progressive delay).
    supports_consumed_points: bool

    def hit(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> CounterState:
        ...

    def consumed_points(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> int:
        ...

    def close(self) -> None:
        ...


class NoopRateLimitStore:
    """
    Disabled store that never counts. Used when rate limiting is turned off
    or configuration is incomplete.
    """

    supports_consumed_points = False

    def hit(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> CounterState:
        return CounterState(count=0, window_reset_epoch=now + config.window_seconds)

    def consumed_points(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> int:
        return 0

    def close(self) -> None:
        return None


class RateLimiter:
    """
    Rate-limit engine over an injected counter store.

    Identifiers are HMAC'd with the server secret before they reach the store,
    so raw addresses and emails never get persisted. Each limit type has its
    own counter; buckets are never shared across operation types.
    """

    def __init__(self, store: RateLimitStore, *, key_secret: str, enabled: bool = True) -> None:
        self.store = store
        self.enabled = enabled
        self._key_secret = key_secret
        if enabled and not store.supports_consumed_points:
            logger.warning(
                "Rate limit store %s cannot report consumed points; progressive login delay is unavailable",
                type(store).__name__,
            )

    @property
    def supports_progressive_delay(self) -> bool:
        return self.enabled and self.store.supports_consumed_points

    def storage_key(self, identifier: str) -> str:
        return keyed_hash(identifier, self._key_secret)

    @staticmethod
    def limiter_key(limit_type: str, config: RateLimitConfig) -> str:
        return f"limit:{limit_type}:window:{config.window_seconds}"

    def consume(
        self,
        limit_type: str,
        config: RateLimitConfig,
        identifier: str,
        *,
        now: int | None = None,
    ) -> RateLimitResult:
        now_ts = int(now if now is not None else time.time())
        limiter_key = self.limiter_key(limit_type, config)
        limit = max(0, config.max_attempts)

        if not self.enabled or limit <= 0 or config.window_seconds <= 0:
            return RateLimitResult(
                allowed=True,
                retry_after_seconds=0,
                limit=limit,
                remaining=limit,
                count=0,
                window_reset_epoch=now_ts + max(config.window_seconds, 0),
                limiter_key=limiter_key,
                window_seconds=config.window_seconds,
            )

        state = self.store.hit(key=self.storage_key(identifier), limit_type=limit_type, config=config, now=now_ts)

        blocked = state.blocked_until is not None and state.blocked_until > now_ts
        allowed = not blocked and state.count <= limit
        remaining = 0 if blocked else max(0, limit - state.count)
        retry_after = 0
        if not allowed:
            reset_at = state.blocked_until if blocked else state.window_reset_epoch
            retry_after = max(1, int(reset_at) - now_ts)

        return RateLimitResult(
            allowed=allowed,
            retry_after_seconds=retry_after,
            limit=limit,
            remaining=remaining,
            count=state.count,
            window_reset_epoch=int(state.blocked_until if blocked else state.window_reset_epoch),
            limiter_key=limiter_key,
            window_seconds=config.window_seconds,
            blocked=blocked,
        )

    def consumed_points(
        self,
        limit_type: str,
        config: RateLimitConfig,
        identifier: str,
        *,
        now: int | None = None,
    ) -> int:
        if not self.supports_progressive_delay:
            return 0
        now_ts = int(now if now is not None else time.time())
        return int(
            self.store.consumed_points(
                key=self.storage_key(identifier), limit_type=limit_type, config=config, now=now_ts
            )
        )

    def progressive_delay_seconds(
        self,
        limit_type: str,
        config: RateLimitConfig,
        identifier: str,
        *,
        now: int | None = None,
    ) -> float:
        if config.progressive_delay is None or not self.supports_progressive_delay:
            return 0.0
        consumed = self.consumed_points(limit_type, config, identifier, now=now)
        return config.progressive_delay.delay_for(consumed)

    def close(self) -> None:
        self.store.close()


def build_rate_limiter(settings: Settings, session_factory: sessionmaker) -> RateLimiter:
    """Construct the process-wide limiter. Called once from the application lifespan."""
    secret = settings.JWT_SECRET
    if not settings.RATE_LIMIT_ENABLED:
        logger.info("Rate limiting disabled via RATE_LIMIT_ENABLED=false; using NoopRateLimitStore")
        return RateLimiter(NoopRateLimitStore(), key_secret=secret, enabled=False)

    backend = settings.RATE_LIMIT_BACKEND
    if backend == "memory":
        from cardsync.services.rate_limiter_memory import InMemoryRateLimitStore

        logger.info("Rate limiting enabled using per-instance in-memory counters")
        return RateLimiter(InMemoryRateLimitStore(), key_secret=secret)

    if backend == "dynamodb":
        table_name = settings.DDB_RATE_LIMIT_TABLE
        region = settings.AWS_REGION
        if not table_name:
            logger.warning("RATE_LIMIT_BACKEND=dynamodb but DDB_RATE_LIMIT_TABLE is unset; disabling limiter")
            return RateLimiter(NoopRateLimitStore(), key_secret=secret, enabled=False)
        if not region:
            logger.warning("RATE_LIMIT_BACKEND=dynamodb but AWS_REGION is unset; disabling limiter")
            return RateLimiter(NoopRateLimitStore(), key_secret=secret, enabled=False)

        from cardsync.services.rate_limiter_dynamo import DynamoRateLimitStore

        client = boto3.client("dynamodb", region_name=region)
        logger.info("Rate limiting enabled using DynamoDB table %s in %s", table_name, region)
        return RateLimiter(DynamoRateLimitStore(client, table_name=table_name), key_secret=secret)

    if backend != "database":
        logger.warning("Unknown RATE_LIMIT_BACKEND=%s; falling back to database counters", backend)

    from cardsync.services.rate_limiter_sql import SqlRateLimitStore

    logger.info("Rate limiting enabled using database counters")
    return RateLimiter(SqlRateLimitStore(session_factory), key_secret=secret)
