"""
Ограничение частоты проверок PIN по ключу в скользящем окне.

Считает только количество вызовов, правильность PIN не учитывается.
Счётчик неудач и блокировка сюда не относятся.
"""
import math
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from pinauth.core.timeutils import utcnow


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: timedelta | None = None

    @property
    def retry_after_seconds(self) -> int | None:
        if self.retry_after is None:
            return None
        # Клиенту всегда отдаём хотя бы одну секунду
        return max(1, math.ceil(self.retry_after.total_seconds()))


class RateLimiter:
    def __init__(
        self,
        window: timedelta = timedelta(minutes=5),
        max_attempts: int = 15,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.window = window
        self.max_attempts = max_attempts
        self.clock = clock
        self._entries: dict[str, deque] = {}
        self._lock = threading.Lock()

    def _prune(self, entries: deque, now: datetime) -> None:
        while entries and now - entries[0] >= self.window:
            entries.popleft()

    def check(self, key: str) -> RateLimitDecision:
        now = self.clock()
        with self._lock:
            entries = self._entries.setdefault(key, deque())
            self._prune(entries, now)
            if len(entries) >= self.max_attempts:
                return RateLimitDecision(False, self.window - (now - entries[0]))
            entries.append(now)
            return RateLimitDecision(True)

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Удаляет ключи без актуальных записей. Возвращает число удалённых ключей."""
        now = self.clock()
        removed = 0
        with self._lock:
            for key in list(self._entries):
                entries = self._entries[key]
                self._prune(entries, now)
                if not entries:
                    del self._entries[key]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._entries)
