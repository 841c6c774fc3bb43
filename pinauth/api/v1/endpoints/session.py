from fastapi import APIRouter, Depends
from pinauth.api.deps import get_bearer_token, get_session_store, require_session, session_error
from pinauth.services.sessions import Session, SessionStore

router = APIRouter()


def session_to_dict(session: Session) -> dict:
    return {
        "identity": session.identity.as_dict(),
        "expiresAt": session.expires_at.isoformat() + "Z",
        "singleUse": session.single_use,
    }


@router.get("/check")
async def check_session(
    consume: bool = False,
    token: str | None = Depends(get_bearer_token),
    sessions: SessionStore = Depends(get_session_store),
):
    """
    Проверка токена сессии. С consume=true токен расходуется
    (так же, как при выполнении чувствительного действия).
    """
    if token is None:
        raise session_error("missing_session")

    if consume:
        session = require_session(token, sessions)
        return session_to_dict(session)

    session = sessions.get(token)
    if session is None:
        raise session_error(sessions.status(token))
    return session_to_dict(session)


@router.post("/revoke")
async def revoke_session(
    token: str | None = Depends(get_bearer_token),
    sessions: SessionStore = Depends(get_session_store),
):
    # Идемпотентно: отсутствующий токен тоже ok
    sessions.revoke(token)
    return {"ok": True}
