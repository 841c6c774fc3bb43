import hmac
import re

from passlib.context import CryptContext

from pinauth.core.config import settings

# pbkdf2 со случайной солью в каждой строке хэша
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def is_valid_pin(pin: str, min_length: int | None = None, max_length: int | None = None) -> bool:
    """Только ASCII-цифры, длина от PIN_MIN_LENGTH до PIN_MAX_LENGTH."""
    min_length = min_length or settings.PIN_MIN_LENGTH
    max_length = max_length or settings.PIN_MAX_LENGTH
    if not isinstance(pin, str):
        return False
    return bool(re.fullmatch(rf"[0-9]{{{min_length},{max_length}}}", pin))


class PinHasher:
    """Хэширует PIN вместе с серверным перцем, который не хранится в БД."""

    def __init__(self, pepper: str):
        self.pepper = pepper

    def hash(self, pin: str) -> str:
        return pwd_context.hash(pin + self.pepper)

    def verify(self, pin: str, pin_hash: str) -> bool:
        return pwd_context.verify(pin + self.pepper, pin_hash)


def admin_key_matches(candidate: str | None, configured: str) -> bool:
    # Пустой ключ в конфиге означает, что сброс отключён
    if not configured or not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), configured.encode("utf-8"))
