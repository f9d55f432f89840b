# cardsync/services/token_blacklist.py
"""
Access token revocation.

Two kinds of rows live in token_blacklist:
- one row per logged-out access token, keyed by its ``jti``
- one sentinel row per logout-all; its ``created_at`` is a cut-off and every
  access token for that user issued at or before it is invalid

A sentinel expires MAX_ACCESS_TTL after it was written: by then every token it
covers has expired on its own, so the sweep can drop it.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, func
from sqlalchemy.orm import Session

from cardsync.auth.identity import AccessIdentity
from cardsync.auth.tokens import MAX_ACCESS_TTL_SECONDS
from cardsync.core.database import upsert_insert
from cardsync.core.timeutil import Clock, as_utc, utcnow
from cardsync.models.token_blacklist import LOGOUT_ALL_REASON, TokenBlacklistEntry


class TokenBlacklist:
    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    def add(self, identity: AccessIdentity, *, reason: str) -> None:
        """Blacklist exactly one access token. Idempotent."""
        stmt = (
            upsert_insert(self.db, TokenBlacklistEntry)
            .values(
                user_id=identity.user_id,
                jti=identity.jti,
                reason=reason,
                created_at=self._clock(),
                expires_at=identity.expires_at,
            )
            .on_conflict_do_nothing(index_elements=["jti"])
        )
        self.db.execute(stmt)

    def revoke_all_for_user(self, user_id: int) -> datetime:
        """Write a logout-all sentinel and return its cut-off."""
        cutoff = self._clock()
        self.db.add(
            TokenBlacklistEntry(
                user_id=user_id,
                jti=f"{LOGOUT_ALL_REASON}:{user_id}:{uuid.uuid4().hex}",
                reason=LOGOUT_ALL_REASON,
                created_at=cutoff,
                expires_at=cutoff + timedelta(seconds=MAX_ACCESS_TTL_SECONDS),
            )
        )
        self.db.flush()
        return cutoff

    def is_jti_blacklisted(self, jti: str) -> bool:
        return (
            self.db.query(TokenBlacklistEntry.id)
            .filter(TokenBlacklistEntry.jti == jti)
            .first()
            is not None
        )

    def logout_all_cutoff(self, user_id: int) -> datetime | None:
        latest = (
            self.db.query(func.max(TokenBlacklistEntry.created_at))
            .filter(
                TokenBlacklistEntry.user_id == user_id,
                TokenBlacklistEntry.reason == LOGOUT_ALL_REASON,
            )
            .scalar()
        )
        return as_utc(latest)

    def is_revoked(self, identity: AccessIdentity) -> bool:
        if self.is_jti_blacklisted(identity.jti):
            return True
        cutoff = self.logout_all_cutoff(identity.user_id)
        return cutoff is not None and identity.issued_at <= cutoff

    def purge_expired(self) -> int:
        result = self.db.execute(
            delete(TokenBlacklistEntry).where(TokenBlacklistEntry.expires_at < self._clock())
        )
        return int(result.rowcount or 0)
