# cardsync/services/sessions.py
"""
Refresh-token rotation with reuse detection.

Every login starts a token family. Each refresh replaces the presented token
with a child in the same family; the replacement is recorded by a single
conditional UPDATE (RefreshTokenStore.mark_rotated), so two concurrent
refreshes with the same token can never both win.

Any presentation of a token that was already rotated or revoked is treated as
theft: the whole family is revoked and the caller gets the same generic 401 as
for an unknown token.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from cardsync.auth.identity import AccessIdentity
from cardsync.auth.tokens import AccessTokenService, IssuedAccessToken
from cardsync.core.errors import ReuseDetectedError, UnauthorizedError
from cardsync.core.log_events import log_event
from cardsync.core.security import generate_refresh_token, hash_refresh_token
from cardsync.core.timeutil import Clock, as_utc, utcnow
from cardsync.models.refresh_token import RefreshToken
from cardsync.models.user import User
from cardsync.services.refresh_tokens import RefreshTokenStore
from cardsync.services.token_blacklist import TokenBlacklist

logger = logging.getLogger(__name__)

REASON_LOGOUT = "logout"
REASON_LOGOUT_ALL = "logout_all"
REASON_REUSE = "reuse_detected"
REASON_EXPIRED = "expired"
REASON_USER_INACTIVE = "user_inactive"

DEFAULT_REFRESH_TTL = timedelta(days=30)


@dataclass(frozen=True)
class SessionTokens:
    """Result of login/refresh. ``refresh_token`` is raw and goes only into the cookie."""

    access: IssuedAccessToken
    refresh_token: str
    family_id: str

    @property
    def access_token(self) -> str:
        return self.access.token

    @property
    def expires_in(self) -> int:
        return self.access.expires_in


def _role_for(user: User) -> str | None:
    return "admin" if user.is_admin else None


class SessionService:
    def __init__(
        self,
        db: Session,
        *,
        tokens: AccessTokenService,
        clock: Clock = utcnow,
        refresh_ttl: timedelta = DEFAULT_REFRESH_TTL,
        secret: str | None = None,
    ) -> None:
        self.db = db
        self.tokens = tokens
        self.refresh_tokens = RefreshTokenStore(db, clock=clock)
        self.blacklist = TokenBlacklist(db, clock=clock)
        self._clock = clock
        self._refresh_ttl = refresh_ttl
        self._secret = secret

    # -----------------------
    # Login
    # -----------------------
    def login(self, user: User) -> SessionTokens:
        """Start a new family for an already-authenticated user."""
        raw = generate_refresh_token()
        family_id = str(uuid.uuid4())
        self.refresh_tokens.create(
            user_id=user.id,
            token_hash=hash_refresh_token(raw, self._secret),
            family_id=family_id,
            expires_at=self._clock() + self._refresh_ttl,
        )
        self.db.commit()

        access = self.tokens.issue(user.id, role=_role_for(user))
        log_event(logger, "session_started", user_id=user.id, family_id=family_id)
        return SessionTokens(access=access, refresh_token=raw, family_id=family_id)

    # -----------------------
    # Refresh
    # -----------------------
    def refresh(self, raw_refresh_token: str | None) -> SessionTokens:
        if not raw_refresh_token:
            raise UnauthorizedError()

        current = self.refresh_tokens.find_by_hash(hash_refresh_token(raw_refresh_token, self._secret))
        if current is None:
            raise UnauthorizedError()

        if current.revoked_at is not None:
            self._reuse(current, detail="revoked")
        if current.replaced_by is not None:
            self._reuse(current, detail="rotated")

        if as_utc(current.expires_at) <= self._clock():
            self._revoke(current, REASON_EXPIRED)
            raise UnauthorizedError()

        user = self.db.get(User, current.user_id)
        if user is None or not user.is_active:
            self._revoke(current, REASON_USER_INACTIVE)
            raise UnauthorizedError()

        raw = generate_refresh_token()
        new_hash = hash_refresh_token(raw, self._secret)
        self.refresh_tokens.create(
            user_id=current.user_id,
            token_hash=new_hash,
            family_id=current.family_id,
            parent_id=current.id,
            expires_at=self._clock() + self._refresh_ttl,
        )

        if self.refresh_tokens.mark_rotated(current.id, new_hash) != 1:
            # Lost the race against a concurrent refresh with the same token.
            self.db.rollback()
            self._reuse(current, detail="concurrent_rotation")

        self.db.commit()
        access = self.tokens.issue(user.id, role=_role_for(user))
        return SessionTokens(access=access, refresh_token=raw, family_id=current.family_id)

    # -----------------------
    # Logout
    # -----------------------
    def logout(self, raw_refresh_token: str | None, identity: AccessIdentity | None = None) -> None:
        """Revoke the presented token's family and blacklist the current access token. Idempotent."""
        family_id = None
        if raw_refresh_token:
            current = self.refresh_tokens.find_by_hash(hash_refresh_token(raw_refresh_token, self._secret))
            if current is not None:
                family_id = current.family_id
                self.refresh_tokens.revoke_family(current.family_id, REASON_LOGOUT)

        if identity is not None:
            self.blacklist.add(identity, reason=REASON_LOGOUT)

        self.db.commit()
        log_event(
            logger,
            "logout",
            user_id=identity.user_id if identity else None,
            family_id=family_id,
        )

    def logout_all(self, user_id: int) -> datetime:
        """Revoke every family for the user and cut off all access tokens issued so far."""
        revoked = self.refresh_tokens.revoke_all_for_user(user_id, REASON_LOGOUT_ALL)
        cutoff = self.blacklist.revoke_all_for_user(user_id)
        self.db.commit()
        log_event(logger, "logout_all", user_id=user_id, revoked_refresh_tokens=revoked, cutoff=cutoff)
        return cutoff

    # -----------------------
    # Internals
    # -----------------------
    def _revoke(self, token: RefreshToken, reason: str) -> None:
        self.refresh_tokens.revoke_family(token.family_id, reason)
        self.db.commit()

    def _reuse(self, token: RefreshToken, *, detail: str) -> None:
        family_id = token.family_id
        user_id = token.user_id
        self._revoke(token, REASON_REUSE)
        log_event(
            logger,
            "refresh_token_reuse",
            level=logging.WARNING,
            user_id=user_id,
            family_id=family_id,
            detail=detail,
        )
        raise ReuseDetectedError(family_id=family_id)
