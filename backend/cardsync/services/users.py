# cardsync/services/users.py
"""
User account helpers.

Responsibilities:
- Registration with normalized email and argon2 password hashing
- Credential check that costs the same for unknown and known emails
- Data erasure and export for the signed-in user
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cardsync.core.errors import RegistrationError, UnauthorizedError
from cardsync.core.security import hash_password, verify_password
from cardsync.core.timeutil import Clock, utcnow
from cardsync.models.device import Device
from cardsync.models.user import User
from cardsync.services.devices import list_devices
from cardsync.services.sync_store import SyncStore

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Look up a user by email address."""
    return db.query(User).filter(User.email == normalize_email(email)).first()


def create_user(db: Session, email: str, password: str) -> User:
    """
    Create a new account.

    Raises:
        RegistrationError: empty input or email already registered. Both get
            the same public message so registration can't be used to discover
            which emails exist.
    """
    normalized = normalize_email(email)
    if not normalized or not password:
        raise RegistrationError()

    if get_user_by_email(db, normalized) is not None:
        raise RegistrationError()

    user = User(email=normalized, password_hash=hash_password(password), is_active=True)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        # Concurrent registration of the same email.
        db.rollback()
        raise RegistrationError() from exc
    db.refresh(user)
    logger.info("Registered user id=%s", user.id)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    """Return the active user for these credentials or raise UnauthorizedError."""
    user = get_user_by_email(db, email)
    ok = verify_password(password, user.password_hash if user else None)
    if user is None or not ok or not user.is_active:
        raise UnauthorizedError()
    return user


def delete_user_data(db: Session, user_id: int) -> dict[str, int]:
    """Erase the user's synced blob and registered devices. The account itself stays."""
    blobs = SyncStore(db).delete(user_id)
    devices = db.execute(delete(Device).where(Device.user_id == user_id)).rowcount or 0
    db.commit()
    logger.info("Deleted user data user_id=%s blobs=%s devices=%s", user_id, blobs, devices)
    return {"sync_blobs": int(blobs), "devices": int(devices)}


def export_user_data(db: Session, user_id: int, *, clock: Clock = utcnow) -> dict[str, Any]:
    snapshot = SyncStore(db).read(user_id)
    return {
        "syncData": snapshot.data,
        "version": snapshot.version,
        "devices": list_devices(db, user_id),
        "exportedAt": clock(),
    }
