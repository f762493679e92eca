# slotgate/utils/civil_time.py
"""
Civil (wall-clock) time helpers for booking windows.

Bookings are entered as a calendar date plus "HH:MM" in India Standard Time,
a fixed UTC+05:30 offset with no DST. Instants are stored as naive UTC datetimes.
Nothing here depends on the server's own time zone.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

from slotgate.errors import InvalidInputError

CIVIL_OFFSET = timedelta(hours=5, minutes=30)
CIVIL_TZ = timezone(CIVIL_OFFSET, "IST")

_YMD = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})\s*$")
_HHMM = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def utc_now() -> datetime:
    """Current instant as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_instant(day: date, hhmm: str) -> datetime:
    """Civil date + "HH:MM" → naive UTC instant."""
    hour, minute = parse_hhmm(hhmm)
    civil = datetime.combine(day, time(hour, minute), tzinfo=CIVIL_TZ)
    return civil.astimezone(timezone.utc).replace(tzinfo=None)


def to_civil(instant: datetime) -> datetime:
    """Naive UTC instant → aware civil datetime."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(CIVIL_TZ)


def civil_today(now: Optional[datetime] = None) -> date:
    return to_civil(now or utc_now()).date()


def format_ymd(now: Optional[datetime] = None) -> str:
    return civil_today(now).isoformat()


def parse_civil_date(value: str) -> date:
    match = _YMD.match(str(value or ""))
    if not match:
        raise InvalidInputError("Invalid booking date")
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        raise InvalidInputError("Invalid booking date")


def parse_hhmm(value: str) -> Tuple[int, int]:
    match = _HHMM.match(str(value or ""))
    if not match:
        raise InvalidInputError("Invalid start/end time")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise InvalidInputError("Invalid start/end time")
    return hour, minute


def booking_window(day: date, start_time: str, end_time: str) -> Tuple[datetime, datetime]:
    """(start, end) instants of a booking. Same-day windows only."""
    return to_instant(day, start_time), to_instant(day, end_time)
