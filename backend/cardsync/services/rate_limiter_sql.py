from __future__ import annotations

from sqlalchemy import and_, case, delete, literal, null, or_, update
from sqlalchemy.orm import Session, sessionmaker

from cardsync.core.database import upsert_insert
from cardsync.models.rate_limit_entry import RateLimitEntry
from cardsync.services.limits import RateLimitConfig
from cardsync.services.rate_limiter import CounterState


class SqlRateLimitStore:
    """
    Durable fixed-window counters in the application database.

    Each hit is one INSERT ... ON CONFLICT DO NOTHING (lazy row creation)
    followed by one UPDATE ... RETURNING that decides reset, increment and
    block from the row's current values. The row lock taken by the UPDATE
    serializes concurrent hits on the same (identifier, limit_type), so no
    increment is lost and nobody reads a count mid-update.
    """

    supports_consumed_points = True

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def hit(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> CounterState:
        with self._session_factory() as db:
            self._ensure_row(db, key=key, limit_type=limit_type, reset_at=now + config.window_seconds)

            blocked = and_(RateLimitEntry.blocked_until.isnot(None), RateLimitEntry.blocked_until > now)
            # A lapsed block starts a fresh window rather than resuming the old count.
            expired = or_(
                RateLimitEntry.window_reset_at <= now,
                and_(RateLimitEntry.blocked_until.isnot(None), RateLimitEntry.blocked_until <= now),
            )
            exceeds = RateLimitEntry.count + 1 > config.max_attempts
            block_until = (
                literal(now + config.block_seconds) if config.block_seconds > 0 else null()
            )

            stmt = (
                update(RateLimitEntry.__table__)
                .where(RateLimitEntry.identifier == key, RateLimitEntry.limit_type == limit_type)
                .values(
                    count=case(
                        (blocked, RateLimitEntry.count),
                        (expired, 1),
                        else_=RateLimitEntry.count + 1,
                    ),
                    window_reset_at=case(
                        (blocked, RateLimitEntry.window_reset_at),
                        (expired, now + config.window_seconds),
                        else_=RateLimitEntry.window_reset_at,
                    ),
                    blocked_until=case(
                        (blocked, RateLimitEntry.blocked_until),
                        (expired, null()),
                        (exceeds, block_until),
                        else_=null(),
                    ),
                )
                .returning(RateLimitEntry.count, RateLimitEntry.window_reset_at, RateLimitEntry.blocked_until)
            )
            # Unpack positionally: Row.count is the tuple method, not the column.
            count, window_reset_at, blocked_until = db.execute(stmt).one()
            db.commit()

        return CounterState(
            count=int(count),
            window_reset_epoch=int(window_reset_at),
            blocked_until=int(blocked_until) if blocked_until is not None else None,
        )

    def consumed_points(self, *, key: str, limit_type: str, config: RateLimitConfig, now: int) -> int:
        with self._session_factory() as db:
            entry = (
                db.query(RateLimitEntry)
                .filter(RateLimitEntry.identifier == key, RateLimitEntry.limit_type == limit_type)
                .first()
            )
            if entry is None:
                return 0
            if entry.blocked_until is not None:
                # Blocked requests are rejected outright; no pause first.
                return 0
            return int(entry.count) if entry.window_reset_at > now else 0

    def purge_stale(self, now: int) -> int:
        """Drop rows whose window has ended and which are not blocking anyone."""
        with self._session_factory() as db:
            result = db.execute(
                delete(RateLimitEntry).where(
                    RateLimitEntry.window_reset_at <= now,
                    or_(RateLimitEntry.blocked_until.is_(None), RateLimitEntry.blocked_until <= now),
                )
            )
            db.commit()
            return int(result.rowcount or 0)

    def close(self) -> None:
        # Engine and pool are owned by cardsync.core.database.
        return None

    @staticmethod
    def _ensure_row(db: Session, *, key: str, limit_type: str, reset_at: int) -> None:
        stmt = (
            upsert_insert(db, RateLimitEntry)
            .values(identifier=key, limit_type=limit_type, count=0, window_reset_at=reset_at, blocked_until=None)
            .on_conflict_do_nothing(index_elements=["identifier", "limit_type"])
        )
        db.execute(stmt)
