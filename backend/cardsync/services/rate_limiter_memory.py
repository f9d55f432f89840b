from __future__ import annotations

import threading

from cardsync.services.limits import RateLimitConfig
from cardsync.services.rate_limiter import CounterState

# Prune once the table grows past this many keys.
_PRUNE_THRESHOLD = 10_000


class InMemoryRateLimitStore:
    """
    Per-instance fixed-window counters for short-lived edge deployments.

    Best effort only: counts are not shared between instances, block durations
    are ignored, and consumed points are not reported, so progressive login
    delay cannot run on top of this store.
    """

    supports_consumed_points = False

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: dict[tuple[str, str], tuple[int, int]] = {}

    def hit(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> CounterState:
        window_start = now - (now % config.window_seconds)
        reset_epoch = window_start + config.window_seconds
        bucket = (key, limit_type)

        with self._lock:
            if len(self._windows) > _PRUNE_THRESHOLD:
                self._prune(now)
            current = self._windows.get(bucket)
            if current is None or current[0] != reset_epoch:
                count = 1
            else:
                count = current[1] + 1
            self._windows[bucket] = (reset_epoch, count)

        return CounterState(count=count, window_reset_epoch=reset_epoch)

    def consumed_points(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> int:
        return 0

    def close(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: int) -> None:
        stale = [bucket for bucket, (reset_epoch, _) in self._windows.items() if reset_epoch <= now]
        for bucket in stale:
            del self._windows[bucket]
