# cardsync/auth/identity.py
"""
Canonical authenticated identity model.

An AccessIdentity is what a successfully verified access token proves: which
user, which token (jti, needed for logout), when it was issued and when it
stops being valid. Downstream code reasons about "who is this user?" without
inspecting raw JWT claims.

The identity is INTERNAL ONLY and should not be returned directly to clients.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class AccessIdentity:
    """
    Attributes:
        user_id: Internal user id (the token's ``sub`` claim).
        jti: Unique token id; blacklisting this value revokes exactly this token.
        issued_at: ``iat`` with sub-second precision, compared against logout-all cut-offs.
        expires_at: ``exp``.
        role: Optional role claim (``"admin"`` for admin users).
        raw_claims: Decoded claims for debugging/audit. Not for authorization decisions.
    """

    user_id: int
    jti: str
    issued_at: datetime
    expires_at: datetime
    role: str | None = None
    raw_claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> AccessIdentity:
        """Build from already-verified claims. Raises ValueError on missing/ill-typed fields."""
        sub = claims.get("sub")
        jti = claims.get("jti")
        iat = claims.get("iat")
        exp = claims.get("exp")
        if not sub or not jti or iat is None or exp is None:
            raise ValueError("Token missing required claims")
        try:
            user_id = int(sub)
            issued_at = datetime.fromtimestamp(float(iat), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(float(exp), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError) as exc:
            raise ValueError("Token claims have invalid types") from exc

        role = claims.get("role")
        return cls(
            user_id=user_id,
            jti=str(jti),
            issued_at=issued_at,
            expires_at=expires_at,
            role=str(role) if role else None,
            raw_claims=dict(claims),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_debug_dict(self) -> dict[str, Any]:
        """
        Return a safe subset of identity info for logs.

        Does NOT include raw_claims.
        """
        return {
            "user_id": self.user_id,
            "jti": self.jti,
            "role": self.role,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
