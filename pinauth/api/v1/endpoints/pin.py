# pinauth/api/v1/endpoints/pin.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from pinauth.api.deps import get_bearer_token, get_pin_service
from pinauth.core.exceptions import IdentityRequired
from pinauth.db.session import get_db
from pinauth.schemas.pin import IdentitySchema, PinSchema, PinStatusRead, SessionTokenRead
from pinauth.services.identity import Identity
from pinauth.services.pin_service import (
    ALREADY_SET,
    BAD_PIN,
    CONSTRAINT_CONFLICT,
    INVALID_PIN_FORMAT,
    LOCKED,
    NOT_SET,
    RATE_LIMITED,
    PinRejection,
    PinService,
)

router = APIRouter()

REJECTION_STATUS = {
    INVALID_PIN_FORMAT: status.HTTP_400_BAD_REQUEST,
    ALREADY_SET: status.HTTP_409_CONFLICT,
    CONSTRAINT_CONFLICT: status.HTTP_409_CONFLICT,
    RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    NOT_SET: status.HTTP_404_NOT_FOUND,
    LOCKED: status.HTTP_423_LOCKED,
    BAD_PIN: status.HTTP_401_UNAUTHORIZED,
}


def parse_identity(data: IdentitySchema) -> Identity:
    try:
        return Identity.parse(data.phone, data.email)
    except IdentityRequired:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "phone_or_email_required"},
        )


def rejection_to_http(rejection: PinRejection) -> HTTPException:
    """Отказ политики -> HTTPException с машиночитаемым видом и числовыми деталями."""
    detail = {"error": rejection.kind}
    headers = None

    if rejection.kind == RATE_LIMITED:
        detail["retryAfterSeconds"] = rejection.retry_after_seconds
        headers = {"Retry-After": str(rejection.retry_after_seconds)}
    elif rejection.kind == LOCKED:
        detail["lockedUntil"] = rejection.locked_until.isoformat() + "Z"
        detail["lockedMinutesRemaining"] = rejection.locked_minutes_remaining
    elif rejection.kind == BAD_PIN:
        detail["attemptsRemaining"] = rejection.attempts_remaining
        detail["locked"] = rejection.locked
        if rejection.locked_until is not None:
            detail["lockedUntil"] = rejection.locked_until.isoformat() + "Z"

    return HTTPException(
        status_code=REJECTION_STATUS.get(rejection.kind, status.HTTP_400_BAD_REQUEST),
        detail=detail,
        headers=headers,
    )


@router.post("/status", response_model=PinStatusRead)
async def pin_status(
    data: IdentitySchema,
    token: str | None = Depends(get_bearer_token),
    service: PinService = Depends(get_pin_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Состояние PIN для телефона/email. Интерфейс киоска решает по нему,
    нужно ли вообще спрашивать PIN. Всегда 200.
    """
    try:
        identity = Identity.parse(data.phone, data.email)
    except IdentityRequired:
        identity = None

    result = await service.pin_status(db, identity, token)
    return {
        "pinSet": result.pin_set,
        "locked": result.locked,
        "lockedMinutesRemaining": result.locked_minutes_remaining,
        "attempts": result.attempts,
        "attemptsRemaining": result.attempts_remaining,
        "sessionActive": result.session_active,
    }


@router.post("/set", response_model=SessionTokenRead)
async def set_pin(
    data: PinSchema,
    service: PinService = Depends(get_pin_service),
    db: AsyncSession = Depends(get_db),
):
    identity = parse_identity(data)
    result = await service.set_pin(db, identity, data.pin)
    if isinstance(result, PinRejection):
        raise rejection_to_http(result)
    return {"sessionToken": result.token, "expiresInMs": result.expires_in_ms}


@router.post("/verify", response_model=SessionTokenRead)
async def verify_pin(
    data: PinSchema,
    service: PinService = Depends(get_pin_service),
    db: AsyncSession = Depends(get_db),
):
    identity = parse_identity(data)
    result = await service.verify_pin(db, identity, data.pin)
    if isinstance(result, PinRejection):
        raise rejection_to_http(result)
    return {"sessionToken": result.token, "expiresInMs": result.expires_in_ms}
