from __future__ import annotations

import asyncio
import logging
from typing import Callable

from fastapi import Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from cardsync.auth.identity import AccessIdentity
from cardsync.core.errors import RateLimitedError
from cardsync.core.log_events import log_event
from cardsync.dependencies.auth import resolve_access_identity
from cardsync.services.limits import get_policy, rate_limit_message
from cardsync.services.rate_limit_identity import derive_rate_limit_identifier, resolve_client_address
from cardsync.services.rate_limiter import RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)


def get_rate_limiter(request: Request) -> RateLimiter:
    # Built once in the application lifespan.
    return request.app.state.rate_limiter


def require_rate_limit(limit_type: str, *, progressive_delay: bool = False) -> Callable:
    """
    Dependency factory: consume one point of ``limit_type`` for this request.

    With ``progressive_delay`` the request is first paused according to how
    many attempts the caller already used in the current window; the hard
    limit still applies afterwards.
    """

    async def dependency(
        request: Request,
        response: Response,
        identity: AccessIdentity | None = Depends(resolve_access_identity),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitResult:
        config = get_policy(limit_type)
        identifier = await _resolve_identifier(request, identity)

        if progressive_delay:
            delay = await run_in_threadpool(limiter.progressive_delay_seconds, limit_type, config, identifier)
            if delay > 0:
                await _pause(delay)

        result = await run_in_threadpool(limiter.consume, limit_type, config, identifier)
        _log_decision(request=request, result=result, limit_type=limit_type, identity=identity)

        if not result.allowed:
            raise RateLimitedError(
                rate_limit_message(limit_type),
                retry_after_seconds=result.retry_after_seconds,
                limit=result.limit,
                remaining=result.remaining,
                reset_epoch=result.window_reset_epoch,
            )

        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.window_reset_epoch)
        return result

    return dependency


async def _pause(seconds: float) -> None:
    # Bounded by the policy max delay; never blocks the event loop.
    await asyncio.sleep(seconds)


async def _resolve_identifier(request: Request, identity: AccessIdentity | None) -> str:
    peer_host = request.client.host if request.client else None
    email = None
    if identity is None and resolve_client_address(request.headers, peer_host) is None:
        email = await _body_email(request)
    return derive_rate_limit_identifier(
        user_id=identity.user_id if identity else None,
        headers=request.headers,
        peer_host=peer_host,
        method=request.method,
        path=request.url.path,
        email=email,
    )


async def _body_email(request: Request) -> str | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("email"), str):
        return body["email"]
    return None


def _log_decision(
    *,
    request: Request,
    result: RateLimitResult,
    limit_type: str,
    identity: AccessIdentity | None,
) -> None:
    log_event(
        logger,
        "rate_limit_decision",
        user_id=identity.user_id if identity else None,
        route=request.url.path,
        http_method=request.method,
        limit_type=limit_type,
        limiter_key=result.limiter_key,
        window_seconds=result.window_seconds,
        limit=result.limit,
        current_count=result.count,
        remaining=result.remaining,
        reset_epoch=result.window_reset_epoch,
        decision="allow" if result.allowed else "block",
    )
