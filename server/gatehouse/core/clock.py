"""Time helpers. Persisted timestamps are naive UTC; "today" is the society's local date.

Functions taking ``tz`` accept an IANA zone name (``Society.timezone``);
``None`` falls back to the SOCIETY_TIMEZONE setting.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import settings


def zone(tz: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(tz or settings.society_timezone)


def utcnow() -> datetime:
    """Current time as naive UTC, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime, tz: Optional[str] = None) -> datetime:
    """Naive UTC instant as naive wall-clock time in the society timezone."""
    return value.replace(tzinfo=timezone.utc).astimezone(zone(tz)).replace(tzinfo=None)


def society_now(tz: Optional[str] = None, now: Optional[datetime] = None) -> datetime:
    """Current (or ``now``, naive UTC) wall-clock time in the society timezone (naive)."""
    return to_local(now or utcnow(), tz)


def today(tz: Optional[str] = None) -> date:
    return society_now(tz).date()


def has_ended(on: date, end: time, tz: Optional[str] = None, now: Optional[datetime] = None) -> bool:
    """True once the society's wall clock has passed ``end`` on day ``on``."""
    return datetime.combine(on, end) <= society_now(tz, now)


def to_utc(value: datetime) -> datetime:
    """Normalise an incoming datetime to naive UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def local_day_bounds(day: date, tz: Optional[str] = None) -> tuple[datetime, datetime]:
    """Naive UTC ``[start, end)`` covering ``day`` in the society timezone."""
    start = datetime.combine(day, time.min, tzinfo=zone(tz))
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone(tz))
    return to_utc(start), to_utc(end)
