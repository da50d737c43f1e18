from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def has_expired(now: datetime, end_time: Optional[datetime]) -> bool:
    """True once ``now`` reaches ``end_time``. No end time means no live window."""
    if end_time is None:
        return False
    return as_utc(now) >= as_utc(end_time)


def attempt_window(now: datetime, duration_minutes: int) -> Tuple[datetime, datetime]:
    start = as_utc(now)
    return start, start + timedelta(minutes=duration_minutes)
