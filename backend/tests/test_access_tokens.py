from __future__ import annotations

import base64
import json

import pytest
from jose import jwt

from cardsync.auth.tokens import (
    MAX_ACCESS_TTL_SECONDS,
    MIN_ACCESS_TTL_SECONDS,
    AccessTokenExpiredError,
    AccessTokenRevokedError,
    AccessTokenService,
    AccessTokenSignatureError,
    InvalidAccessTokenError,
    MalformedAccessTokenError,
    clamp_ttl,
)
from cardsync.core.security import constant_time_equals, require_secret


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def test_issue_and_verify_round_trip(token_service, clock):
    issued = token_service.issue(42, role="admin")

    identity = token_service.verify(issued.token)

    assert identity.user_id == 42
    assert identity.jti == issued.identity.jti
    assert identity.role == "admin"
    assert identity.issued_at == clock()
    assert issued.expires_in == 3600


def test_every_token_gets_a_unique_jti(token_service):
    jtis = {token_service.issue(1).identity.jti for _ in range(20)}
    assert len(jtis) == 20


@pytest.mark.parametrize(
    "requested, expected",
    [
        (None, 3600),
        (60, MIN_ACCESS_TTL_SECONDS),
        (7 * 24 * 3600, MAX_ACCESS_TTL_SECONDS),
        (1800, 1800),
    ],
)
def test_ttl_is_clamped(token_service, requested, expected):
    assert token_service.issue(1, ttl_seconds=requested).expires_in == expected


def test_clamp_ttl_default_is_clamped_too():
    assert clamp_ttl(None, minimum=900, maximum=86400, default=10) == 900


def test_expired_token_is_rejected_as_expired_not_malformed(clock):
    service = AccessTokenService("test_jwt_secret", min_ttl_seconds=1, clock=clock)
    token = service.issue(1, ttl_seconds=1).token

    clock.advance(2)

    with pytest.raises(AccessTokenExpiredError):
        service.verify(token)
    assert not issubclass(AccessTokenExpiredError, MalformedAccessTokenError)


def test_expiry_never_cuts_the_lifetime_short(clock):
    clock.current = clock.current.replace(microsecond=700_000)
    service = AccessTokenService("test_jwt_secret", min_ttl_seconds=1, clock=clock)
    token = service.issue(1, ttl_seconds=1).token

    claims = jwt.get_unverified_claims(token)
    assert claims["exp"] - claims["iat"] >= 1

    # Still inside the full second it was issued for.
    clock.advance(0.9)
    assert service.verify(token).user_id == 1


def test_tampered_payload_fails_signature(token_service):
    token = token_service.issue(1).token
    header, _, signature = token.split(".")
    forged_claims = jwt.get_unverified_claims(token)
    forged_claims["sub"] = "2"
    forged = f"{header}.{_b64(forged_claims)}.{signature}"

    with pytest.raises(AccessTokenSignatureError):
        token_service.verify(forged)


def test_token_signed_with_other_secret_is_rejected(token_service, clock):
    other = AccessTokenService("another-secret", clock=clock)
    with pytest.raises(AccessTokenSignatureError):
        token_service.verify(other.issue(1).token)


def test_alg_none_is_rejected(token_service):
    claims = jwt.get_unverified_claims(token_service.issue(1).token)
    unsigned = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(claims)}.c2ln"

    with pytest.raises(AccessTokenSignatureError):
        token_service.verify(unsigned)


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a..c", "ä.ö.ü", "!!!.###.$$$"])
def test_malformed_tokens_fail_closed(token_service, token):
    with pytest.raises(InvalidAccessTokenError):
        token_service.verify(token)


def test_non_access_token_type_is_rejected(token_service, clock):
    token = jwt.encode(
        {"sub": "1", "jti": "x", "iat": clock().timestamp(), "exp": clock().timestamp() + 60, "typ": "refresh"},
        "test_jwt_secret",
        algorithm="HS256",
    )
    with pytest.raises(MalformedAccessTokenError):
        token_service.verify(token)


def test_revocation_check_is_consulted(token_service):
    class _RevokeAll:
        def is_revoked(self, identity):
            return True

    token = token_service.issue(1).token
    with pytest.raises(AccessTokenRevokedError):
        token_service.verify(token, _RevokeAll())


def test_constant_time_equals_handles_different_lengths():
    assert constant_time_equals(b"abc", b"abc")
    assert not constant_time_equals(b"abc", b"abcd")
    assert not constant_time_equals("abc", "abd")
    assert constant_time_equals("", "")


@pytest.mark.parametrize("secret", ["", "   "])
def test_blank_secret_is_refused(secret):
    with pytest.raises(RuntimeError, match="JWT_SECRET must be set"):
        require_secret(secret)
