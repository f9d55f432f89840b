from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from cardsync.auth.identity import AccessIdentity
from cardsync.auth.tokens import AccessTokenService
from cardsync.core.database import get_db
from cardsync.dependencies.auth import get_current_identity, get_token_service, resolve_access_identity
from cardsync.dependencies.origin import require_trusted_origin
from cardsync.dependencies.rate_limit import require_rate_limit
from cardsync.schemas.auth import LoginIn, MessageOut, RegisteredOut, RegisterIn, TokenOut
from cardsync.schemas.device import DeviceOut, DeviceRegisterIn
from cardsync.services import limits
from cardsync.services.devices import list_devices, register_device, remove_device
from cardsync.services.refresh_cookie import (
    clear_refresh_cookie,
    read_refresh_cookie,
    refresh_token_ttl,
    set_refresh_cookie,
)
from cardsync.services.sessions import SessionService, SessionTokens
from cardsync.services.users import authenticate, create_user

router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(require_trusted_origin)])


def _sessions(db: Session, tokens: AccessTokenService) -> SessionService:
    return SessionService(db, tokens=tokens, refresh_ttl=refresh_token_ttl())


def _token_out(session: SessionTokens) -> dict:
    return {
        "access_token": session.access_token,
        "token_type": "bearer",
        "expires_in": session.expires_in,
    }


@router.post(
    "/register",
    response_model=RegisteredOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_rate_limit(limits.REGISTER))],
)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    user = create_user(db, payload.email, payload.password)
    return {"id": user.id, "email": user.email}


@router.post(
    "/login",
    response_model=TokenOut,
    dependencies=[Depends(require_rate_limit(limits.LOGIN, progressive_delay=True))],
)
def login(
    payload: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    tokens: AccessTokenService = Depends(get_token_service),
):
    user = authenticate(db, payload.email, payload.password)
    session = _sessions(db, tokens).login(user)

    # Refresh token only ever travels in the HttpOnly cookie.
    set_refresh_cookie(response, session.refresh_token)
    return _token_out(session)


@router.post(
    "/refresh",
    response_model=TokenOut,
    dependencies=[Depends(require_rate_limit(limits.REFRESH))],
)
def refresh(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    tokens: AccessTokenService = Depends(get_token_service),
):
    """
    Rotate the refresh token in the cookie:
      - reject unknown, expired, rotated or revoked tokens (generic 401)
      - on reuse, the whole family is revoked before rejecting
      - issue new refresh cookie + access token
    """
    session = _sessions(db, tokens).refresh(read_refresh_cookie(request))
    set_refresh_cookie(response, session.refresh_token)
    return _token_out(session)


@router.post(
    "/logout",
    response_model=MessageOut,
    dependencies=[Depends(require_rate_limit(limits.LOGOUT))],
)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    tokens: AccessTokenService = Depends(get_token_service),
    identity: AccessIdentity | None = Depends(resolve_access_identity),
):
    """Revoke the cookie's token family and blacklist the bearer token, if any. Always succeeds."""
    _sessions(db, tokens).logout(read_refresh_cookie(request), identity)
    clear_refresh_cookie(response)
    return {"message": "Logged out"}


@router.post(
    "/logout-all",
    response_model=MessageOut,
    dependencies=[Depends(require_rate_limit(limits.LOGOUT))],
)
def logout_all(
    response: Response,
    db: Session = Depends(get_db),
    tokens: AccessTokenService = Depends(get_token_service),
    identity: AccessIdentity = Depends(get_current_identity),
):
    _sessions(db, tokens).logout_all(identity.user_id)
    clear_refresh_cookie(response)
    return {"message": "Logged out from all devices"}


# -----------------------------
# Devices
# -----------------------------
@router.post(
    "/device/register",
    response_model=DeviceOut,
    dependencies=[Depends(require_rate_limit(limits.DEVICES))],
)
def device_register(
    payload: DeviceRegisterIn,
    db: Session = Depends(get_db),
    identity: AccessIdentity = Depends(get_current_identity),
):
    return register_device(db, identity.user_id, payload.device_id, payload.name)


@router.get(
    "/devices",
    response_model=list[DeviceOut],
    dependencies=[Depends(require_rate_limit(limits.DEVICES))],
)
def devices(db: Session = Depends(get_db), identity: AccessIdentity = Depends(get_current_identity)):
    return list_devices(db, identity.user_id)


@router.delete(
    "/device/{device_id}",
    response_model=MessageOut,
    dependencies=[Depends(require_rate_limit(limits.DEVICES))],
)
def device_remove(
    device_id: str,
    db: Session = Depends(get_db),
    identity: AccessIdentity = Depends(get_current_identity),
):
    remove_device(db, identity.user_id, device_id)
    return {"message": "Device removed"}
