# cardsync/services/sync_store.py
"""
Single encrypted blob per user, guarded by optimistic concurrency.

A write is accepted iff no row exists yet or its version strictly exceeds the
stored one. The check and the write are one INSERT ... ON CONFLICT DO UPDATE
... WHERE statement, so two devices racing on the same user can never both
pass a separate read-then-write check. Ordering follows the version value, not
arrival time. There is no merge logic here: on rejection the caller returns the
stored version and the client re-merges.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete
from sqlalchemy.orm import Session

from cardsync.core.database import upsert_insert
from cardsync.core.timeutil import Clock, as_utc, utcnow
from cardsync.models.sync_blob import SyncBlob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncSnapshot:
    version: int
    data: Any | None
    updated_at: datetime | None = None

    @property
    def exists(self) -> bool:
        return self.data is not None


class SyncStore:
    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    def read(self, user_id: int) -> SyncSnapshot:
        blob = self.db.query(SyncBlob).filter(SyncBlob.user_id == user_id).first()
        if blob is None:
            return SyncSnapshot(version=0, data=None)
        return SyncSnapshot(
            version=int(blob.version),
            data=json.loads(blob.encrypted_data),
            updated_at=as_utc(blob.updated_at),
        )

    def current_version(self, user_id: int) -> int:
        version = self.db.query(SyncBlob.version).filter(SyncBlob.user_id == user_id).scalar()
        return int(version or 0)

    def write(self, user_id: int, new_version: int, payload: Any) -> bool:
        """Version-gated upsert. Returns True when the write was accepted."""
        stmt = upsert_insert(self.db, SyncBlob).values(
            user_id=user_id,
            version=new_version,
            encrypted_data=json.dumps(payload, separators=(",", ":")),
            updated_at=self._clock(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "version": stmt.excluded.version,
                "encrypted_data": stmt.excluded.encrypted_data,
                "updated_at": stmt.excluded.updated_at,
            },
            where=SyncBlob.__table__.c.version < stmt.excluded.version,
        )
        result = self.db.execute(stmt)
        accepted = int(result.rowcount or 0) > 0
        if not accepted:
            logger.info("Sync write rejected: user_id=%s version=%s", user_id, new_version)
        return accepted

    def delete(self, user_id: int) -> int:
        result = self.db.execute(delete(SyncBlob).where(SyncBlob.user_id == user_id))
        return int(result.rowcount or 0)
