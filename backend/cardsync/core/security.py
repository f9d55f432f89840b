# cardsync/core/security.py
from __future__ import annotations

import hashlib
import hmac
import secrets

from passlib.context import CryptContext

from cardsync.core.config import settings

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# Verified against when the account does not exist so unknown emails cost the same.
_DUMMY_PASSWORD_HASH = pwd_context.hash("cardsync-dummy-password")


# -------------------------
# Password hashing
# -------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        pwd_context.verify(password, _DUMMY_PASSWORD_HASH)
        return False
    return pwd_context.verify(password, password_hash)


# -------------------------
# Secrets
# -------------------------
def require_secret(secret: str | None = None) -> str:
    value = secret if secret is not None else settings.JWT_SECRET
    if not value or not value.strip():
        raise RuntimeError("JWT_SECRET must be set (auth is required).")
    return value


def constant_time_equals(a: str | bytes, b: str | bytes) -> bool:
    """
    Compare two values without leaking content or length through timing.

    Both sides are hashed to a fixed-size digest first, so compare_digest always
    walks the same number of bytes regardless of where (or whether) they differ.
    """
    a_bytes = a.encode("utf-8") if isinstance(a, str) else a
    b_bytes = b.encode("utf-8") if isinstance(b, str) else b
    return hmac.compare_digest(hashlib.sha256(a_bytes).digest(), hashlib.sha256(b_bytes).digest())


def keyed_hash(value: str, secret: str | None = None) -> str:
    """HMAC-SHA256 hex digest keyed by the server secret."""
    key = require_secret(secret).encode("utf-8")
    return hmac.new(key, value.encode("utf-8"), hashlib.sha256).hexdigest()


# -------------------------
# Refresh token helpers
# -------------------------
def generate_refresh_token() -> str:
    """
    Generate a cryptographically secure refresh token.
    This raw token is ONLY returned to the client once.
    Backend stores ONLY a hash.
    """
    return secrets.token_urlsafe(48)


def hash_refresh_token(raw_token: str, secret: str | None = None) -> str:
    """
    Store only a hash in DB.
    Keyed by JWT_SECRET so DB leaks can't be brute-forced easily.
    """
    return keyed_hash(raw_token, secret)
