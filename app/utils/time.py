"""Time utilities."""
from datetime import UTC, date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from app.config import get_settings


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def parse_iso_utc(value: str) -> datetime:
    """Parse an ISO 8601 string and normalize it to UTC."""

    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive values read back from SQLite; convert aware ones."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_zone(name: str | None = None) -> ZoneInfo:
    """Return the platform's local time zone (``LESSON_TIMEZONE``)."""

    return ZoneInfo(name or get_settings().LESSON_TIMEZONE)


def add_business_days(start: date, count: int) -> date:
    """Return the ``count``-th weekday strictly after ``start``."""

    current = start
    added = 0
    while added < count:
        current += timedelta(days=1)
        if current.weekday() < 5:
            added += 1
    return current


__all__ = ["utcnow", "parse_iso_utc", "ensure_utc", "local_zone", "add_business_days"]
