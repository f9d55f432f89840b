from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from cardsync.core.timeutil import Clock, utcnow
from cardsync.models.refresh_token import RefreshToken


class RefreshTokenStore:
    """
    Persistence for refresh-token families.

    Only two mutations exist besides create/purge:
    - mark_rotated: the CAS that sets replaced_by exactly once
    - revoke_*: idempotent, family-wide (or user-wide) revocation

    Callers own the transaction (commit/rollback).
    """

    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    def create(
        self,
        *,
        user_id: int,
        token_hash: str,
        family_id: str,
        expires_at: datetime,
        parent_id: int | None = None,
    ) -> RefreshToken:
        rt = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            family_id=family_id,
            parent_id=parent_id,
            created_at=self._clock(),
            expires_at=expires_at,
        )
        self.db.add(rt)
        self.db.flush()
        return rt

    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        return self.db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).first()

    def mark_rotated(self, token_id: int, new_hash: str) -> int:
        """
        Compare-and-set: succeeds only while the token is still active.

        Returns rows affected. Zero means another caller already rotated (or
        revoked) this token; that is a reuse signal, not a transient failure.
        """
        result = self.db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.id == token_id,
                RefreshToken.replaced_by.is_(None),
                RefreshToken.revoked_at.is_(None),
            )
            .values(replaced_by=new_hash, rotated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def revoke_family(self, family_id: str, reason: str) -> int:
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.family_id == family_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=self._clock(), revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def revoke_all_for_user(self, user_id: int, reason: str) -> int:
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=self._clock(), revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def purge_expired(self) -> int:
        # Children point at parents; detach before deleting so the FK never dangles.
        now = self._clock()
        expired_ids = select(RefreshToken.id).where(RefreshToken.expires_at < now)
        self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.parent_id.in_(expired_ids))
            .values(parent_id=None)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)
