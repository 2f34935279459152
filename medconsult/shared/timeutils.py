"""Date and clock-time helpers"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from ..config import OPERATING_TIMEZONE

TIME_REGEX = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
TIME_RANGE_DELIMITER = "-"

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now() -> datetime:
    return datetime.now(OPERATING_TIMEZONE)


def is_valid_time(value: Optional[str]) -> bool:
    return bool(value) and bool(TIME_REGEX.match(value))


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def parse_clock(value: str) -> time:
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def split_time_range(value: str) -> tuple[str, Optional[str]]:
    """'10:00-10:30' or '10:00 - 10:30' -> ('10:00', '10:30')"""
    parts = [p.strip() for p in (value or "").split(TIME_RANGE_DELIMITER)]
    start = parts[0] if parts else ""
    end = parts[1] if len(parts) > 1 and parts[1] else None
    return start, end


def format_time_range(start: str, end: str) -> str:
    return f"{start}-{end}"


def is_valid_time_range(value: str) -> bool:
    start, end = split_time_range(value)
    if not is_valid_time(start) or not is_valid_time(end):
        return False
    return time_to_minutes(start) < time_to_minutes(end)


def to_calendar_date(value) -> date:
    """Accept a date, datetime or ISO string and return the calendar day"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"Unsupported date value: {value!r}")


def day_start(value) -> datetime:
    """Midnight of the calendar day, as stored in appointment_date"""
    return datetime.combine(to_calendar_date(value), time.min)


def weekday_name(value) -> str:
    return WEEKDAYS[to_calendar_date(value).weekday()]


def local_instant(day, clock: str) -> datetime:
    """Aware datetime for a calendar day + 'HH:MM' in the operating timezone"""
    return datetime.combine(to_calendar_date(day), parse_clock(clock), tzinfo=OPERATING_TIMEZONE)


def local_to_utc_naive(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def session_end_instant(appointment_date, appointment_time: str) -> Optional[datetime]:
    """End of the consultation: calendar date + end-of-range clock time"""
    _, end = split_time_range(appointment_time)
    if not end or not is_valid_time(end):
        return None
    return local_instant(appointment_date, end)


def session_start_instant(appointment_date, appointment_time: str) -> Optional[datetime]:
    start, _ = split_time_range(appointment_time)
    if not is_valid_time(start):
        return None
    return local_instant(appointment_date, start)


def minutes_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier) / timedelta(minutes=1)
