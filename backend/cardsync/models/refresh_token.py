# cardsync/models/refresh_token.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cardsync.core.base import Base


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Store ONLY a hash of the refresh token (never store raw refresh token)
    token_hash = Column(String(64), unique=True, index=True, nullable=False)

    # All tokens produced by rotations starting from one login share a family.
    family_id = Column(String(36), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Set exactly once, by the rotation CAS. Holds the successor's token hash.
    rotated_at = Column(DateTime(timezone=True), nullable=True)
    replaced_by = Column(String(64), nullable=True)

    # If set, token is no longer valid
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_reason = Column(String(50), nullable=True)

    # Absolute expiration for this refresh token
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    user = relationship("User", back_populates="refresh_tokens")

    @property
    def is_active(self) -> bool:
        return self.replaced_by is None and self.revoked_at is None
