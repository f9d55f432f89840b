from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cardsync.auth.identity import AccessIdentity
from cardsync.core.database import get_db
from cardsync.dependencies.auth import get_current_identity
from cardsync.dependencies.origin import require_trusted_origin
from cardsync.dependencies.rate_limit import require_rate_limit
from cardsync.schemas.device import DeviceOut
from cardsync.schemas.user import DeleteDataOut, UserExportOut
from cardsync.services import limits
from cardsync.services.users import delete_user_data, export_user_data

router = APIRouter(prefix="/user", tags=["user"], dependencies=[Depends(require_trusted_origin)])


@router.delete(
    "/data",
    response_model=DeleteDataOut,
    dependencies=[Depends(require_rate_limit(limits.SYNC_WRITE))],
)
def delete_data(db: Session = Depends(get_db), identity: AccessIdentity = Depends(get_current_identity)):
    delete_user_data(db, identity.user_id)
    return DeleteDataOut()


@router.get(
    "/export",
    response_model=UserExportOut,
    dependencies=[Depends(require_rate_limit(limits.SYNC_READ))],
)
def export_data(db: Session = Depends(get_db), identity: AccessIdentity = Depends(get_current_identity)):
    exported = export_user_data(db, identity.user_id)
    return UserExportOut(
        sync_data=exported["syncData"],
        version=exported["version"],
        devices=[DeviceOut.model_validate(d) for d in exported["devices"]],
        exported_at=exported["exportedAt"],
    )
