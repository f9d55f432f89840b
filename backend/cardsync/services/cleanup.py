from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.orm import Session

from cardsync.core.log_events import log_event
from cardsync.core.timeutil import Clock, epoch_seconds, utcnow
from cardsync.services.refresh_tokens import RefreshTokenStore
from cardsync.services.token_blacklist import TokenBlacklist

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    refresh_tokens: int = 0
    blacklist_entries: int = 0
    rate_limit_entries: int = 0


def run_cleanup(db: Session, *, rate_limit_store: object | None = None, clock: Clock = utcnow) -> CleanupReport:
    """
    Delete rows that can no longer affect any decision:
    expired refresh tokens, expired blacklist entries and (for the database
    rate-limit backend) counters whose window and block have both ended.
    """
    refresh_tokens = RefreshTokenStore(db, clock=clock).purge_expired()
    blacklist_entries = TokenBlacklist(db, clock=clock).purge_expired()
    db.commit()

    rate_limit_entries = 0
    purge_stale = getattr(rate_limit_store, "purge_stale", None)
    if purge_stale is not None:
        rate_limit_entries = purge_stale(epoch_seconds(clock()))

    report = CleanupReport(
        refresh_tokens=refresh_tokens,
        blacklist_entries=blacklist_entries,
        rate_limit_entries=rate_limit_entries,
    )
    log_event(logger, "cleanup_completed", **asdict(report))
    return report
