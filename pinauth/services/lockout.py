"""Правила блокировки после неверных PIN. Чистые функции, без обращений к БД."""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import NamedTuple

MAX_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=15)


class FailureState(NamedTuple):
    failure_count: int
    locked_until: datetime | None


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = MAX_ATTEMPTS
    lockout_duration: timedelta = LOCKOUT_DURATION

    def is_locked(self, row, now: datetime) -> bool:
        return row.locked_until is not None and row.locked_until > now

    def next_failure_state(self, row, now: datetime) -> FailureState:
        count = (row.failure_count or 0) + 1
        if count >= self.max_attempts:
            return FailureState(count, now + self.lockout_duration)
        return FailureState(count, row.locked_until)

    def attempts_remaining(self, row) -> int:
        return max(0, self.max_attempts - (row.failure_count or 0))

    def minutes_remaining(self, row, now: datetime) -> int:
        """Сколько минут (с округлением вверх) осталось до снятия блокировки."""
        if not self.is_locked(row, now):
            return 0
        return math.ceil((row.locked_until - now).total_seconds() / 60)
