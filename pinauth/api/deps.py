# pinauth/api/deps.py
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pinauth.services.pin_service import PinService
from pinauth.services.sessions import CONSUMED, Session, SessionStore

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_pin_service(request: Request) -> PinService:
    return request.app.state.pin_service


def get_session_store(service: PinService = Depends(get_pin_service)) -> SessionStore:
    return service.sessions


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    if credentials is None or not credentials.credentials:
        return None
    return credentials.credentials


def session_error(kind: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": kind},
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_session(
    token: str | None = Depends(get_bearer_token),
    sessions: SessionStore = Depends(get_session_store),
) -> Session:
    """
    Разрешает одно чувствительное действие: проверяет токен и расходует его.
    Повторное использование одноразового токена отклоняется.
    """
    if token is None:
        raise session_error("missing_session")

    session = sessions.get(token)
    if session is None or not sessions.consume(token):
        kind = sessions.status(token)
        logger.info("Сессия %s... отклонена: %s", token[:8], kind)
        raise session_error(CONSUMED if kind == CONSUMED else "invalid_or_expired")
    return session
