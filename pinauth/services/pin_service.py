# pinauth/services/pin_service.py
"""
Установка и проверка PIN, выдача сессий, сброс администратором.

Ожидаемые отказы (неверный формат, PIN уже задан, блокировка, лимит частоты,
неверный PIN, PIN не задан) возвращаются как PinRejection, а не исключения.
Исключением выходит только StorageError.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from pinauth.core.config import Settings
from pinauth.core.exceptions import ConflictError, StorageError
from pinauth.core.security import PinHasher, admin_key_matches, is_valid_pin
from pinauth.core.timeutils import utcnow
from pinauth.db.repositories.pin_credential import (
    admin_clear_pin,
    clear_failures,
    lookup_credential,
    record_failure,
    upsert_credential,
)
from pinauth.services.identity import Identity
from pinauth.services.lockout import LockoutPolicy
from pinauth.services.rate_limiter import RateLimiter
from pinauth.services.sessions import SessionStore

logger = logging.getLogger(__name__)

INVALID_PIN_FORMAT = "invalid_pin_format"
ALREADY_SET = "already_set"
CONSTRAINT_CONFLICT = "constraint_conflict"
RATE_LIMITED = "rate_limited"
NOT_SET = "not_set"
LOCKED = "locked"
BAD_PIN = "bad_pin"
FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class PinGranted:
    token: str
    expires_at: datetime
    expires_in_ms: int


@dataclass(frozen=True)
class PinRejection:
    kind: str
    attempts_remaining: int | None = None
    locked: bool | None = None
    locked_until: datetime | None = None
    locked_minutes_remaining: int | None = None
    retry_after_seconds: int | None = None


@dataclass(frozen=True)
class PinStatus:
    pin_set: bool
    locked: bool
    locked_minutes_remaining: int
    attempts: int
    attempts_remaining: int
    session_active: bool


@dataclass(frozen=True)
class AdminResetResult:
    ok: bool
    rows_affected: int


class PinService:
    def __init__(
        self,
        sessions: SessionStore,
        limiter: RateLimiter,
        hasher: PinHasher,
        policy: LockoutPolicy | None = None,
        admin_key: str = "",
        clock: Callable[[], datetime] = utcnow,
        pin_min_length: int = 4,
        pin_max_length: int = 6,
    ):
        self.sessions = sessions
        self.limiter = limiter
        self.hasher = hasher
        self.policy = policy or LockoutPolicy()
        self.admin_key = admin_key
        self.clock = clock
        self.pin_min_length = pin_min_length
        self.pin_max_length = pin_max_length

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = utcnow) -> "PinService":
        return cls(
            sessions=SessionStore(ttl=timedelta(minutes=settings.SESSION_TTL_MINUTES), clock=clock),
            limiter=RateLimiter(
                window=timedelta(seconds=settings.VERIFY_WINDOW_SECONDS),
                max_attempts=settings.VERIFY_MAX_WINDOW_ATTEMPTS,
                clock=clock,
            ),
            hasher=PinHasher(settings.PIN_PEPPER),
            policy=LockoutPolicy(
                max_attempts=settings.PIN_MAX_ATTEMPTS,
                lockout_duration=timedelta(minutes=settings.PIN_LOCKOUT_MINUTES),
            ),
            admin_key=settings.ADMIN_KEY,
            clock=clock,
            pin_min_length=settings.PIN_MIN_LENGTH,
            pin_max_length=settings.PIN_MAX_LENGTH,
        )

    def _grant(self, identity: Identity) -> PinGranted:
        session = self.sessions.create(identity, single_use=True)
        expires_in = session.expires_at - self.clock()
        return PinGranted(
            token=session.token,
            expires_at=session.expires_at,
            expires_in_ms=max(0, int(expires_in.total_seconds() * 1000)),
        )

    async def set_pin(self, db: AsyncSession, identity: Identity, pin: str) -> PinGranted | PinRejection:
        if not is_valid_pin(pin, self.pin_min_length, self.pin_max_length):
            return PinRejection(INVALID_PIN_FORMAT)

        existing = await lookup_credential(db, identity.phone, identity.email)
        if existing is not None and existing.pin_hash:
            logger.info("PIN уже задан для %s", identity.key)
            return PinRejection(ALREADY_SET)

        pin_hash = await run_in_threadpool(self.hasher.hash, pin)
        try:
            written = await upsert_credential(
                db, identity.phone, identity.email, pin_hash,
                only_if_unset=True, now=self.clock(),
            )
        except ConflictError as e:
            logger.warning("Конфликт записей PIN для phone=%s email=%s: %s", identity.phone, identity.email, e)
            return PinRejection(CONSTRAINT_CONFLICT)

        # Параллельный запрос успел задать PIN раньше
        if not written:
            return PinRejection(ALREADY_SET)

        logger.info("PIN задан для %s", identity.key)
        return self._grant(identity)

    async def verify_pin(self, db: AsyncSession, identity: Identity, pin: str) -> PinGranted | PinRejection:
        # Лимит частоты проверяется до любых обращений к записи
        decision = self.limiter.check(identity.key)
        if not decision.allowed:
            logger.info("Лимит проверок PIN превышен для %s", identity.key)
            return PinRejection(RATE_LIMITED, retry_after_seconds=decision.retry_after_seconds)

        now = self.clock()
        credential = await lookup_credential(db, identity.phone, identity.email)
        if credential is None or not credential.pin_hash:
            return PinRejection(NOT_SET)

        if self.policy.is_locked(credential, now):
            return PinRejection(
                LOCKED,
                attempts_remaining=0,
                locked=True,
                locked_until=credential.locked_until,
                locked_minutes_remaining=self.policy.minutes_remaining(credential, now),
            )

        matches = await run_in_threadpool(self.hasher.verify, pin, credential.pin_hash)
        if not matches:
            state = await record_failure(db, credential, self.policy, now)
            locked = state.locked_until is not None and state.locked_until > now
            logger.info(
                "Неверный PIN для %s: попытка %d, блокировка=%s",
                identity.key, state.failure_count, locked,
            )
            return PinRejection(
                BAD_PIN,
                attempts_remaining=max(0, self.policy.max_attempts - state.failure_count),
                locked=locked,
                locked_until=state.locked_until if locked else None,
            )

        await clear_failures(db, credential, now)
        return self._grant(identity)

    async def pin_status(self, db: AsyncSession, identity: Identity | None, token: str | None = None) -> PinStatus:
        if identity is None or identity.is_empty:
            return PinStatus(
                pin_set=False,
                locked=False,
                locked_minutes_remaining=0,
                attempts=0,
                attempts_remaining=self.policy.max_attempts,
                session_active=False,
            )

        session = self.sessions.get(token)
        # Сессия считается активной только для того же телефона или email
        session_active = session is not None and (
            (identity.phone is not None and session.identity.phone == identity.phone)
            or (identity.email is not None and session.identity.email == identity.email)
        )

        now = self.clock()
        credential = await lookup_credential(db, identity.phone, identity.email)
        if credential is None:
            return PinStatus(False, False, 0, 0, self.policy.max_attempts, session_active)

        return PinStatus(
            pin_set=bool(credential.pin_hash),
            locked=self.policy.is_locked(credential, now),
            locked_minutes_remaining=self.policy.minutes_remaining(credential, now),
            attempts=credential.failure_count or 0,
            attempts_remaining=self.policy.attempts_remaining(credential),
            session_active=session_active,
        )

    async def admin_reset_pin(
        self, db: AsyncSession, identity: Identity, admin_key: str | None
    ) -> AdminResetResult | PinRejection:
        if not admin_key_matches(admin_key, self.admin_key):
            logger.warning(
                "AUDIT admin-reset-pin отклонён: неверный ключ (phone=%s, email=%s)",
                identity.phone, identity.email,
            )
            return PinRejection(FORBIDDEN)

        try:
            rows = await admin_clear_pin(db, identity.phone, identity.email, self.clock())
        except StorageError:
            logger.warning(
                "AUDIT admin-reset-pin ошибка хранилища: phone=%s, email=%s",
                identity.phone, identity.email,
            )
            raise
        logger.warning(
            "AUDIT admin-reset-pin выполнен: phone=%s, email=%s, rows=%d",
            identity.phone, identity.email, rows,
        )
        return AdminResetResult(ok=True, rows_affected=rows)
