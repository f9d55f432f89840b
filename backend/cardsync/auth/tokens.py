# cardsync/auth/tokens.py
"""
Access token issuing and verification.

Access tokens are short-lived, stateless HS256 JWTs:
- signed with the server secret (python-jose)
- carry a unique ``jti`` so logout can blacklist exactly one token
- ``iat`` keeps sub-second precision so logout-all cut-offs are exact

Verification fails closed. Structure, algorithm, signature and expiry failures
raise typed exceptions (useful for server-side logging) that all derive from
InvalidAccessTokenError; the HTTP layer renders every one of them as the same
generic 401.
"""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Any, Protocol

from jose import JWTError, jwk, jwt
from jose.constants import ALGORITHMS
from jose.utils import base64url_decode

from cardsync.auth.identity import AccessIdentity
from cardsync.core.security import constant_time_equals, require_secret
from cardsync.core.timeutil import Clock, utcnow

MIN_ACCESS_TTL_SECONDS = 15 * 60
MAX_ACCESS_TTL_SECONDS = 24 * 60 * 60
DEFAULT_ACCESS_TTL_SECONDS = 60 * 60

TOKEN_TYPE = "access"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class InvalidAccessTokenError(Exception):
    """Base exception for access token verification failures."""

    pass


class MalformedAccessTokenError(InvalidAccessTokenError):
    """Raised when the token is not a well-formed JWS."""

    pass


class AccessTokenSignatureError(InvalidAccessTokenError):
    """Raised when the signature or algorithm does not match."""

    pass


class AccessTokenExpiredError(InvalidAccessTokenError):
    """Raised when the token has expired."""

    pass


class AccessTokenRevokedError(InvalidAccessTokenError):
    """Raised when the token was blacklisted or predates a logout-all."""

    pass


class RevocationCheck(Protocol):
    def is_revoked(self, identity: AccessIdentity) -> bool:
        ...


@dataclass(frozen=True)
class IssuedAccessToken:
    token: str
    identity: AccessIdentity

    @property
    def expires_in(self) -> int:
        return max(0, int((self.identity.expires_at - self.identity.issued_at).total_seconds()))


def clamp_ttl(ttl_seconds: int | None, *, minimum: int, maximum: int, default: int) -> int:
    value = default if ttl_seconds is None else int(ttl_seconds)
    return max(minimum, min(maximum, value))


class AccessTokenService:
    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = ALGORITHMS.HS256,
        default_ttl_seconds: int = DEFAULT_ACCESS_TTL_SECONDS,
        min_ttl_seconds: int = MIN_ACCESS_TTL_SECONDS,
        max_ttl_seconds: int = MAX_ACCESS_TTL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        if algorithm != ALGORITHMS.HS256:
            raise RuntimeError(f"Unsupported access token algorithm: {algorithm}")
        self._secret = require_secret(secret)
        self._key = jwk.construct(self._secret, algorithm=algorithm)
        self.algorithm = algorithm
        self.min_ttl_seconds = min_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        self.default_ttl_seconds = clamp_ttl(
            default_ttl_seconds,
            minimum=min_ttl_seconds,
            maximum=max_ttl_seconds,
            default=DEFAULT_ACCESS_TTL_SECONDS,
        )
        self._clock = clock

    # -----------------------
    # Issue
    # -----------------------
    def issue(self, user_id: int, *, ttl_seconds: int | None = None, role: str | None = None) -> IssuedAccessToken:
        ttl = clamp_ttl(
            ttl_seconds,
            minimum=self.min_ttl_seconds,
            maximum=self.max_ttl_seconds,
            default=self.default_ttl_seconds,
        )
        now = self._clock()
        expires = now + timedelta(seconds=ttl)

        claims: dict[str, Any] = {
            "sub": str(user_id),
            "jti": uuid.uuid4().hex,
            "typ": TOKEN_TYPE,
            "iat": round(now.timestamp(), 6),
            "exp": math.ceil(expires.timestamp()),
        }
        if role:
            claims["role"] = role

        token = jwt.encode(claims, self._secret, algorithm=self.algorithm)
        return IssuedAccessToken(token=token, identity=AccessIdentity.from_claims(claims))

    # -----------------------
    # Verify
    # -----------------------
    def decode(self, token: str) -> AccessIdentity:
        """
        Verify structure, algorithm, signature and expiry.

        Raises:
            MalformedAccessTokenError: not a three-part JWS / undecodable
            AccessTokenSignatureError: wrong algorithm or signature mismatch
            AccessTokenExpiredError: ``exp`` is in the past
        """
        parts = (token or "").split(".")
        if len(parts) != 3 or not all(parts):
            raise MalformedAccessTokenError("Token must have three segments")

        header_segment, claims_segment, signature_segment = parts
        try:
            header = jwt.get_unverified_header(token)
            signature = base64url_decode(signature_segment.encode("ascii"))
            signing_input = f"{header_segment}.{claims_segment}".encode("ascii")
        except (JWTError, ValueError) as exc:
            raise MalformedAccessTokenError("Token is not decodable") from exc

        if header.get("alg") != self.algorithm:
            raise AccessTokenSignatureError("Unexpected token algorithm")

        expected = self._key.sign(signing_input)
        if not constant_time_equals(signature, expected):
            raise AccessTokenSignatureError("Signature verification failed")

        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedAccessTokenError("Token claims are not decodable") from exc

        if claims.get("typ") != TOKEN_TYPE:
            raise MalformedAccessTokenError("Not an access token")

        try:
            identity = AccessIdentity.from_claims(claims)
        except ValueError as exc:
            raise MalformedAccessTokenError(str(exc)) from exc

        if identity.expires_at < self._clock().astimezone(timezone.utc):
            raise AccessTokenExpiredError("Token has expired")

        return identity

    def verify(self, token: str, revocations: RevocationCheck | None = None) -> AccessIdentity:
        identity = self.decode(token)
        if revocations is not None and revocations.is_revoked(identity):
            raise AccessTokenRevokedError("Token has been revoked")
        return identity
