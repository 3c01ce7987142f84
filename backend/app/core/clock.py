"""Wall-clock helpers.

Task times are stored as naive datetimes holding local wall-clock time in the
configured timezone, which is also the form the language model reads and writes
("YYYY-MM-DD HH:MM").
"""
from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from app.core.config import settings


def local_tz(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or settings.timezone)


def local_now(tz_name: str | None = None) -> datetime:
    """Return the current local wall-clock time as a naive datetime."""
    return datetime.now(local_tz(tz_name)).replace(tzinfo=None, microsecond=0)


def to_local_naive(value: datetime, tz_name: str | None = None) -> datetime:
    """Convert an aware datetime to local wall-clock time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(local_tz(tz_name)).replace(tzinfo=None)


def format_wall_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")
