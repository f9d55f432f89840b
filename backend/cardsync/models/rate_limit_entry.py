# cardsync/models/rate_limit_entry.py
from sqlalchemy import BigInteger, Column, Integer, String, UniqueConstraint

from cardsync.core.base import Base


class RateLimitEntry(Base):
    __tablename__ = "rate_limit_entries"
    __table_args__ = (UniqueConstraint("identifier", "limit_type", name="uq_rate_limit_identifier_type"),)

    id = Column(Integer, primary_key=True, index=True)

    # HMAC of the derived client identifier; raw addresses/emails are never stored.
    identifier = Column(String(64), nullable=False)
    limit_type = Column(String(32), nullable=False)

    count = Column(Integer, nullable=False, default=0)

    # Epoch seconds.
    window_reset_at = Column(BigInteger, nullable=False, index=True)
    blocked_until = Column(BigInteger, nullable=True)
