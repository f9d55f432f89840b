# cardsync/models/sync_blob.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.sql import func

from cardsync.core.base import Base


class SyncBlob(Base):
    __tablename__ = "sync_blobs"

    id = Column(Integer, primary_key=True, index=True)

    # One encrypted blob per user.
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    # Monotonic per user; a write is accepted only if it strictly increases this.
    version = Column(Integer, nullable=False)

    # Opaque client-encrypted envelope, serialized JSON. Never decrypted server side.
    encrypted_data = Column(Text, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
