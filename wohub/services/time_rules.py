"""
Time rules for the ledger.
Duration arithmetic, hour formatting and timezone conversions.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import pytz
from ..config import settings


SECONDS_PER_HOUR = 3600.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Return a timezone-aware UTC datetime.

    SQLite hands back naive datetimes for DateTime(timezone=True) columns;
    those are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def hours_between(start: datetime, end: datetime) -> float:
    """
    Elapsed hours between two instants.

    No clamp is applied: an end before the start yields a negative value.
    """
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_HOUR


def add_hours(start: datetime, hours: float) -> datetime:
    return ensure_utc(start) + timedelta(hours=hours)


def format_hours(hours: Optional[float]) -> str:
    """
    Compact format: "45 min" under an hour, otherwise hours with one decimal ("2.5h").
    """
    if not hours:
        return "0 min"
    total_minutes = round(hours * 60)
    if total_minutes < 60:
        return f"{total_minutes} min"
    rounded = round(hours * 10) / 10
    if rounded == int(rounded):
        return f"{int(rounded)}h"
    return f"{rounded}h"


def format_hours_detailed(hours: Optional[float]) -> str:
    """
    Detailed format used by the completion report: "7h 00min", "2h 05min", "45 min".
    """
    if not hours:
        return "0 min"
    total_minutes = round(hours * 60)
    if total_minutes < 60:
        return f"{total_minutes} min"
    h, m = divmod(total_minutes, 60)
    return f"{h}h {m:02d}min"


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (aware or naive)
        timezone_str: Timezone string (defaults to TZ_DEFAULT)

    Returns:
        Local datetime (timezone-aware)
    """
    try:
        tz = pytz.timezone(timezone_str or settings.tz_default)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    return ensure_utc(utc_datetime).astimezone(tz)
