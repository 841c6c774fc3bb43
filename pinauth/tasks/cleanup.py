import logging
from pinauth.services.rate_limiter import RateLimiter
from pinauth.services.sessions import SessionStore

logger = logging.getLogger(__name__)


def reap_expired_sessions(sessions: SessionStore, limiter: RateLimiter | None = None) -> int:
    """
    Освобождает память от просроченных сессий и пустых ключей лимитера.
    На корректность не влияет: просроченные записи отбрасываются и при чтении.
    """
    removed = sessions.reap()
    stale_keys = limiter.sweep() if limiter is not None else 0

    if removed or stale_keys:
        logger.info("Очистка: удалено сессий %d, ключей лимитера %d", removed, stale_keys)
    else:
        logger.debug("Очистка: удалять нечего.")
    return removed
