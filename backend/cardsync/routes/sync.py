from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cardsync.auth.identity import AccessIdentity
from cardsync.core.config import settings
from cardsync.core.database import get_db
from cardsync.core.errors import PayloadTooLargeError, VersionConflictError
from cardsync.dependencies.auth import get_current_identity
from cardsync.dependencies.origin import require_trusted_origin
from cardsync.dependencies.rate_limit import require_rate_limit
from cardsync.schemas.sync import SyncReadOut, SyncWriteIn, SyncWriteOut
from cardsync.services import limits
from cardsync.services.sync_store import SyncStore

router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[Depends(require_trusted_origin)])


async def enforce_sync_payload_limit(request: Request) -> None:
    max_bytes = settings.SYNC_MAX_PAYLOAD_BYTES
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PayloadTooLargeError(max_bytes)
    if len(await request.body()) > max_bytes:
        raise PayloadTooLargeError(max_bytes)


@router.get(
    "/data",
    response_model=SyncReadOut,
    dependencies=[Depends(require_rate_limit(limits.SYNC_READ))],
)
def read_sync_data(db: Session = Depends(get_db), identity: AccessIdentity = Depends(get_current_identity)):
    snapshot = SyncStore(db).read(identity.user_id)
    return SyncReadOut(
        encrypted_data=snapshot.data,
        version=snapshot.version,
        updated_at=snapshot.updated_at,
    )


@router.put(
    "/data",
    response_model=SyncWriteOut,
    dependencies=[
        Depends(require_rate_limit(limits.SYNC_WRITE)),
        Depends(enforce_sync_payload_limit),
    ],
)
def write_sync_data(
    payload: SyncWriteIn,
    db: Session = Depends(get_db),
    identity: AccessIdentity = Depends(get_current_identity),
):
    store = SyncStore(db)
    if not store.write(identity.user_id, payload.version, payload.encrypted_data):
        db.rollback()
        raise VersionConflictError(store.current_version(identity.user_id))
    db.commit()
    return SyncWriteOut(version=payload.version)
