"""In-memory хранилище сессионных токенов.

Токены живут только в памяти процесса: после перезапуска все сессии
недействительны. Просроченные записи отбрасываются при каждом обращении,
периодическая очистка (reap) только освобождает память.
"""
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from pinauth.core.timeutils import utcnow
from pinauth.services.identity import Identity

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(minutes=30)

ACTIVE = "active"
CONSUMED = "consumed"
INVALID_OR_EXPIRED = "invalid_or_expired"


@dataclass
class Session:
    token: str
    identity: Identity
    single_use: bool
    expires_at: datetime
    created_at: datetime
    used: bool = field(default=False)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_usable(self, now: datetime) -> bool:
        return not self.is_expired(now) and (not self.single_use or not self.used)


class SessionStore:
    def __init__(self, ttl: timedelta = SESSION_TTL, clock: Callable[[], datetime] = utcnow):
        self.ttl = ttl
        self.clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, identity: Identity, single_use: bool = True) -> Session:
        now = self.clock()
        session = Session(
            token=secrets.token_urlsafe(32),
            identity=identity,
            single_use=single_use,
            expires_at=now + self.ttl,
            created_at=now,
        )
        with self._lock:
            self._sessions[session.token] = session
        logger.info("Выдана сессия %s... (single_use=%s)", session.token[:8], single_use)
        return session

    def _live(self, token: str, now: datetime) -> Session | None:
        # Вызывать только под self._lock
        session = self._sessions.get(token)
        if session is not None and session.is_expired(now):
            del self._sessions[token]
            return None
        return session

    def get(self, token: str | None) -> Session | None:
        """Возвращает сессию, если ей ещё можно пользоваться. Чтение не расходует сессию."""
        if not token:
            return None
        now = self.clock()
        with self._lock:
            session = self._live(token, now)
            if session is None or not session.is_usable(now):
                return None
            return session

    def status(self, token: str | None) -> str:
        if not token:
            return INVALID_OR_EXPIRED
        now = self.clock()
        with self._lock:
            session = self._live(token, now)
            if session is None:
                return INVALID_OR_EXPIRED
            if session.single_use and session.used:
                return CONSUMED
            return ACTIVE

    def consume(self, token: str | None) -> bool:
        """
        Атомарно помечает одноразовую сессию использованной.
        True только при первом использовании; многоразовые сессии
        можно использовать до истечения TTL.
        """
        if not token:
            return False
        now = self.clock()
        with self._lock:
            session = self._live(token, now)
            if session is None:
                return False
            if not session.single_use:
                return True
            if session.used:
                return False
            session.used = True
            return True

    def revoke(self, token: str | None) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token, None)

    def reap(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [token for token, s in self._sessions.items() if s.is_expired(now)]
            for token in expired:
                del self._sessions[token]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)
