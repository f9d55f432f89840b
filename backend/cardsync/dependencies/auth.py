# cardsync/dependencies/auth.py
from __future__ import annotations

import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from cardsync.auth.identity import AccessIdentity
from cardsync.auth.tokens import AccessTokenService, InvalidAccessTokenError
from cardsync.core.config import settings
from cardsync.core.database import get_db
from cardsync.core.errors import UnauthorizedError
from cardsync.services.token_blacklist import TokenBlacklist

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_token_service() -> AccessTokenService:
    return AccessTokenService(
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        default_ttl_seconds=settings.ACCESS_TOKEN_TTL_SECONDS,
    )


def resolve_access_identity(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    tokens: AccessTokenService = Depends(get_token_service),
) -> AccessIdentity | None:
    """
    Decode and verify the bearer token once per request.

    Returns None instead of raising so the rate limiter can key anonymous and
    badly-authenticated callers by address. FastAPI caches the result for the
    request, so routes that also require auth reuse this decode.
    """
    if not creds or creds.scheme.lower() != "bearer":
        return None
    try:
        return tokens.verify(creds.credentials, TokenBlacklist(db))
    except InvalidAccessTokenError as exc:
        logger.info("Access token rejected: %s", type(exc).__name__)
        return None


def get_current_identity(identity: AccessIdentity | None = Depends(resolve_access_identity)) -> AccessIdentity:
    """
    Validates:
      - Authorization: Bearer <token>
      - signature, algorithm, expiry
      - jti not blacklisted, not issued before a logout-all
    """
    if identity is None:
        raise UnauthorizedError()
    return identity
