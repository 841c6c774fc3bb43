import re
from dataclasses import dataclass

from email_validator import EmailNotValidError, validate_email

from pinauth.core.exceptions import IdentityRequired


def normalize_phone(phone: str | None) -> str | None:
    # +1 (555) 123-4567 / 555.123.4567 -> 15551234567 / 5551234567
    digits = re.sub(r"[^0-9]", "", str(phone or ""))
    return digits or None


def normalize_email(email: str | None) -> str | None:
    """Email в нижнем регистре; пустой или некорректный считается отсутствующим."""
    value = str(email or "").strip().lower()
    if not value:
        return None
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return None
    return value


@dataclass(frozen=True)
class Identity:
    phone: str | None = None
    email: str | None = None

    @classmethod
    def parse(cls, phone: str | None = None, email: str | None = None) -> "Identity":
        identity = cls(normalize_phone(phone), normalize_email(email))
        if identity.is_empty:
            raise IdentityRequired()
        return identity

    @property
    def is_empty(self) -> bool:
        return not self.phone and not self.email

    @property
    def key(self) -> str:
        """Ключ для ограничения частоты: телефон, иначе email."""
        return self.phone or self.email or ""

    def as_dict(self) -> dict:
        return {"phone": self.phone, "email": self.email}
