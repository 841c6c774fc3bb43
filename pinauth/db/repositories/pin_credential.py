# pinauth/db/repositories/pin_credential.py

import logging
from datetime import datetime
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from pinauth.core.exceptions import ConflictError, StorageError
from pinauth.core.timeutils import utcnow
from pinauth.db.models.pin_credential import PinCredential
from pinauth.services.lockout import FailureState, LockoutPolicy

logger = logging.getLogger(__name__)

# Сколько раз повторяем compare-and-swap, если параллельный запрос успел раньше
CAS_RETRIES = 5


async def _fetch_one(db: AsyncSession, *criteria) -> PinCredential | None:
    query = (
        select(PinCredential)
        .where(*criteria)
        .execution_options(populate_existing=True)
    )
    try:
        result = await db.execute(query)
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("credential lookup failed") from e
    return result.scalars().first()


async def get_credential(db: AsyncSession, credential_id: int) -> PinCredential | None:
    return await _fetch_one(db, PinCredential.id == credential_id)


async def get_credential_by_phone(db: AsyncSession, phone: str) -> PinCredential | None:
    return await _fetch_one(db, PinCredential.phone == phone)


async def get_credential_by_email(db: AsyncSession, email: str) -> PinCredential | None:
    return await _fetch_one(db, PinCredential.email == email)


async def lookup_credential(
    db: AsyncSession, phone: str | None = None, email: str | None = None
) -> PinCredential | None:
    """
    Поиск записи: сначала по телефону, и только если по телефону ничего нет - по email.
    Запись, найденная по телефону, никогда не подменяется записью, найденной по email.
    """
    if phone:
        credential = await get_credential_by_phone(db, phone)
        if credential is not None:
            return credential
    if email:
        return await get_credential_by_email(db, email)
    return None


async def upsert_credential(
    db: AsyncSession,
    phone: str | None,
    email: str | None,
    pin_hash: str,
    *,
    only_if_unset: bool = False,
    now: datetime | None = None,
) -> bool:
    """
    Создаёт запись или заменяет хэш в существующей (счётчик и блокировка сбрасываются).
    only_if_unset - запись обновляется только если PIN ещё не задан, проверка идёт
    в том же UPDATE. Возвращает False, если ничего не записано.
    """
    now = now or utcnow()
    by_phone = await get_credential_by_phone(db, phone) if phone else None
    by_email = await get_credential_by_email(db, email) if email else None

    if by_phone is not None and by_email is not None and by_phone.id != by_email.id:
        raise ConflictError(
            f"phone and email belong to different credentials ({by_phone.id}, {by_email.id})"
        )

    target = by_phone or by_email
    try:
        if target is None:
            db.add(PinCredential(
                phone=phone,
                email=email,
                pin_hash=pin_hash,
                failure_count=0,
                locked_until=None,
                created_at=now,
                updated_at=now,
            ))
            await db.commit()
            return True

        values = {
            "pin_hash": pin_hash,
            "failure_count": 0,
            "locked_until": None,
            "updated_at": now,
        }
        # Дописываем недостающий ключ, но не перезаписываем существующий
        if phone and target.phone is None:
            values["phone"] = phone
        if email and target.email is None:
            values["email"] = email

        query = update(PinCredential).where(PinCredential.id == target.id)
        if only_if_unset:
            query = query.where(PinCredential.pin_hash.is_(None))
        result = await db.execute(
            query.values(**values).execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("credential uniqueness violated") from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("credential upsert failed") from e


async def record_failure(
    db: AsyncSession,
    credential: PinCredential,
    policy: LockoutPolicy,
    now: datetime | None = None,
) -> FailureState:
    """
    Увеличивает счётчик неудач через compare-and-swap по failure_count,
    чтобы две параллельные неудачные попытки не потеряли инкремент.
    """
    now = now or utcnow()
    current = credential
    for _ in range(CAS_RETRIES):
        state = policy.next_failure_state(current, now)
        query = (
            update(PinCredential)
            .where(PinCredential.id == current.id)
            .where(PinCredential.failure_count == current.failure_count)
            .values(
                failure_count=state.failure_count,
                locked_until=state.locked_until,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await db.execute(query)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise StorageError("failed to record PIN failure") from e

        if result.rowcount == 1:
            return state

        current = await get_credential(db, credential.id)
        if current is None:
            raise StorageError(f"credential {credential.id} disappeared")
        logger.info("Повтор записи неудачной попытки для записи %s", credential.id)

    raise StorageError(f"failure counter for credential {credential.id} kept changing")


async def clear_failures(
    db: AsyncSession, credential: PinCredential, now: datetime | None = None
) -> None:
    query = (
        update(PinCredential)
        .where(PinCredential.id == credential.id)
        .values(failure_count=0, locked_until=None, updated_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    try:
        await db.execute(query)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("failed to clear PIN failures") from e


async def admin_clear_pin(
    db: AsyncSession,
    phone: str | None = None,
    email: str | None = None,
    now: datetime | None = None,
) -> int:
    """Стирает хэш и счётчики для повторной регистрации PIN. Строки не удаляются."""
    criteria = []
    if phone:
        criteria.append(PinCredential.phone == phone)
    if email:
        criteria.append(PinCredential.email == email)
    if not criteria:
        return 0

    query = (
        update(PinCredential)
        .where(or_(*criteria))
        .values(pin_hash=None, failure_count=0, locked_until=None, updated_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    try:
        result = await db.execute(query)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("failed to clear PIN") from e
    return result.rowcount
