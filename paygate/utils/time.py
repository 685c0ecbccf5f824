"""Time utilities."""
from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def days_from_now(days: int, *, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(days=days)


__all__ = ["utcnow", "ensure_aware", "days_from_now"]
