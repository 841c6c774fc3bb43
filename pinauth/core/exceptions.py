# pinauth/core/exceptions.py
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Хранилище недоступно или вернуло ошибку, которую нельзя разрешить."""


class ConflictError(StorageError):
    """Телефон и email указывают на разные записи, либо нарушена уникальность."""


class IdentityRequired(ValueError):
    """Не передан ни телефон, ни email."""

    def __init__(self):
        super().__init__("phone_or_email_required")


async def storage_error_handler(request: Request, exc: StorageError):
    # Подробности только в лог, клиенту - общий ответ
    logger.exception("Ошибка хранилища при обработке %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": {"error": "storage_error"}})
