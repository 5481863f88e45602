"""Utility constants and helpers for oneweek.

Time unit constants represent durations in seconds. The week helpers define
the cache's time-window key: the Monday 00:00 that starts an event's week.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

# Time unit constants (all values in seconds)
SECOND = 1
MINUTE = 60
HOUR = 3600
DAY = 86400
WEEK = 604800

# RFC 5545 compact UTC form used by UNTIL (and EXDATE)
COMPACT_UTC_FORMAT = "%Y%m%dT%H%M%SZ"


def week_start(moment: datetime | date, zone: ZoneInfo | None = None) -> datetime:
    """Return the Monday 00:00 that starts the week containing ``moment``.

    Args:
        moment: Timezone-aware datetime, or a date (taken as a calendar day)
        zone: Zone whose calendar defines the week (default: moment's own
            zone, or UTC for dates)

    Returns:
        Timezone-aware datetime at midnight on the week's Monday
    """
    if isinstance(moment, datetime):
        tz = zone or moment.tzinfo or timezone.utc
        day = moment.astimezone(tz).date() if moment.tzinfo else moment.date()
    else:
        tz = zone or timezone.utc
        day = moment
    monday = day - timedelta(days=day.weekday())
    return datetime.combine(monday, time.min, tzinfo=tz)


def week_key(moment: datetime | date, zone: ZoneInfo | None = None) -> str:
    """Cache key for the week containing ``moment`` (ISO string of its Monday)."""
    return week_start(moment, zone).isoformat()


def week_bounds(key: str) -> tuple[datetime, datetime]:
    """Return the half-open ``[start, end)`` range covered by a week key."""
    start = datetime.fromisoformat(key)
    return start, start + timedelta(days=7)


def to_compact_utc(moment: datetime) -> str:
    """Format a timezone-aware datetime as ``YYYYMMDDThhmmssZ`` in UTC."""
    return moment.astimezone(timezone.utc).strftime(COMPACT_UTC_FORMAT)


def from_compact_utc(value: str) -> datetime:
    """Parse ``YYYYMMDDThhmmssZ`` (or a bare ``YYYYMMDD``) into a UTC datetime."""
    if "T" not in value:
        return datetime.strptime(value, "%Y%m%d").replace(tzinfo=timezone.utc)
    return datetime.strptime(value, COMPACT_UTC_FORMAT).replace(tzinfo=timezone.utc)
