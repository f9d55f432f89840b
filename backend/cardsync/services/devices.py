from __future__ import annotations

from sqlalchemy.orm import Session

from cardsync.core.errors import AppError
from cardsync.core.timeutil import Clock, utcnow
from cardsync.models.device import Device


class DeviceNotFoundError(AppError):
    status_code = 404
    error_code = "NOT_FOUND"
    public_message = "Device not found"


class DeviceConflictError(AppError):
    status_code = 409
    error_code = "CONFLICT"
    public_message = "Device id already registered"


def register_device(db: Session, user_id: int, device_id: str, name: str, *, clock: Clock = utcnow) -> Device:
    """Create the device, or refresh its name and last-seen time if this user already owns it."""
    device = db.query(Device).filter(Device.device_id == device_id).first()
    now = clock()
    if device is not None:
        if device.user_id != user_id:
            raise DeviceConflictError()
        device.name = name
        device.last_seen_at = now
    else:
        device = Device(user_id=user_id, device_id=device_id, name=name, created_at=now, last_seen_at=now)
        db.add(device)
    db.commit()
    db.refresh(device)
    return device


def list_devices(db: Session, user_id: int) -> list[Device]:
    return (
        db.query(Device)
        .filter(Device.user_id == user_id)
        .order_by(Device.last_seen_at.desc(), Device.id.desc())
        .all()
    )


def remove_device(db: Session, user_id: int, device_id: str) -> None:
    device = (
        db.query(Device)
        .filter(Device.user_id == user_id, Device.device_id == device_id)
        .first()
    )
    # Someone else's device looks the same as a missing one.
    if device is None:
        raise DeviceNotFoundError()
    db.delete(device)
    db.commit()
