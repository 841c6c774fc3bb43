from datetime import datetime, timezone


def utcnow() -> datetime:
    """Текущее время в UTC без tzinfo (в таком виде даты хранятся в БД)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
