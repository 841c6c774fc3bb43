import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from pinauth.api.deps import get_pin_service
from pinauth.core.exceptions import IdentityRequired
from pinauth.db.session import get_db
from pinauth.schemas.pin import AdminResetRead, AdminResetSchema
from pinauth.services.identity import Identity
from pinauth.services.pin_service import PinRejection, PinService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/pin/reset", response_model=AdminResetRead)
async def admin_reset_pin(
    data: AdminResetSchema,
    service: PinService = Depends(get_pin_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Сброс PIN для повторной регистрации. Каждый вызов пишется в журнал аудита.
    """
    try:
        identity = Identity.parse(data.phone, data.email)
    except IdentityRequired:
        logger.warning("AUDIT admin-reset-pin отклонён: не указан телефон или email")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "phone_or_email_required"},
        )

    result = await service.admin_reset_pin(db, identity, data.admin_key)
    if isinstance(result, PinRejection):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"error": result.kind})
    return {"ok": result.ok, "rowsAffected": result.rows_affected}
