# cardsync/models/token_blacklist.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from cardsync.core.base import Base

LOGOUT_ALL_REASON = "logout_all"


class TokenBlacklistEntry(Base):
    __tablename__ = "token_blacklist"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Exact access token id, or a synthetic id for logout-all sentinels.
    jti = Column(String(128), unique=True, index=True, nullable=False)
    reason = Column(String(50), nullable=False)

    # For logout-all sentinels this is the cut-off: tokens issued at or before it are invalid.
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Safe to garbage-collect once every token it covers has expired anyway.
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
