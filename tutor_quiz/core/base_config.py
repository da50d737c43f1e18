from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer


def to_utc_iso(dt: datetime) -> str:
    """ISO 8601 with millisecond precision and an explicit 'Z' suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# SQLite hands back naive datetimes, which are stored as UTC.
UtcDatetime = Annotated[datetime, PlainSerializer(to_utc_iso, return_type=str, when_used="json")]


class BaseConfig(BaseModel):
    model_config = ConfigDict(from_attributes=True)
