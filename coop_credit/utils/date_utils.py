"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Timezone-aware current time"""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def add_days(from_date: datetime, days: int) -> datetime:
    """Add calendar days to a timestamp"""
    return ensure_aware(from_date) + timedelta(days=days)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end (negative if end is earlier)"""
    return (ensure_aware(end) - ensure_aware(start)).days
