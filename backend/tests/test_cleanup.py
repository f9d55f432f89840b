from __future__ import annotations

import logging
from datetime import timedelta

from cardsync.models.rate_limit_entry import RateLimitEntry
from cardsync.models.refresh_token import RefreshToken
from cardsync.models.token_blacklist import TokenBlacklistEntry
from cardsync.services import limits
from cardsync.services.cleanup import CleanupReport, run_cleanup
from cardsync.services.rate_limiter_sql import SqlRateLimitStore
from cardsync.services.token_blacklist import TokenBlacklist


def test_cleanup_purges_only_dead_rows(db_session, session_factory, users, token_service, clock, caplog):
    user, _ = users
    now = clock()

    db_session.add_all(
        [
            RefreshToken(
                user_id=user.id,
                token_hash="a" * 64,
                family_id="expired-family",
                created_at=now - timedelta(days=40),
                expires_at=now - timedelta(days=10),
            ),
            RefreshToken(
                user_id=user.id,
                token_hash="b" * 64,
                family_id="live-family",
                created_at=now,
                expires_at=now + timedelta(days=30),
            ),
        ]
    )
    blacklist = TokenBlacklist(db_session, clock=clock)
    blacklist.add(token_service.issue(user.id, ttl_seconds=token_service.min_ttl_seconds).identity, reason="logout")
    blacklist.add(token_service.issue(user.id, ttl_seconds=token_service.max_ttl_seconds).identity, reason="logout")
    db_session.commit()

    store = SqlRateLimitStore(session_factory)
    login = limits.get_policy(limits.LOGIN)
    refresh = limits.get_policy(limits.REFRESH)
    epoch = clock.epoch
    store.hit(key="stale", limit_type=limits.REFRESH, config=refresh, now=epoch)
    for _ in range(login.max_attempts + 1):
        store.hit(key="blocked", limit_type=limits.LOGIN, config=login, now=epoch)

    # Past the refresh window and the shortest blacklist entry, inside the login block.
    clock.advance(3000)
    with caplog.at_level(logging.INFO):
        report = run_cleanup(db_session, rate_limit_store=store, clock=clock)

    assert report == CleanupReport(refresh_tokens=1, blacklist_entries=1, rate_limit_entries=1)
    assert "cleanup_completed" in caplog.text
    assert db_session.query(RefreshToken).count() == 1
    assert db_session.query(TokenBlacklistEntry).count() == 1

    # The login counter stays until its block (and window) is over.
    remaining = db_session.query(RateLimitEntry).all()
    assert [r.limit_type for r in remaining] == [limits.LOGIN]


def test_cleanup_without_database_store_skips_rate_limits(db_session, clock):
    class _EphemeralStore:
        pass

    report = run_cleanup(db_session, rate_limit_store=_EphemeralStore(), clock=clock)
    assert report.rate_limit_entries == 0
