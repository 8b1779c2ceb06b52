"""
Wall-clock time arithmetic for appointment scheduling.

All appointment times are stored as zero-padded "HH:MM" strings in the
branch's local time. No timezone handling happens here and no floating point
is used: everything is integer minutes since midnight.

Usage:
    from shared.time_utils import calculate_end_time, times_overlap

    calculate_end_time("23:00", 120)            # "01:00"
    times_overlap("10:00", "11:00", "10:30", "11:30")  # True
"""

import re
from datetime import date, timedelta

MINUTES_PER_DAY = 24 * 60

# Lowercase day names indexed by Python weekday() (0=Monday ... 6=Sunday)
DAY_NAMES = [
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
]

# Sorts after every valid "HH:MM" value
END_OF_DAY = "24:00"

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> int:
    """
    Convert an "HH:MM" string to minutes since midnight.

    Raises:
        ValueError: If the value is not a valid zero-padded 24h time
    """
    match = _HHMM_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid time '{value}'. Expected HH:MM (00:00-23:59)")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_hhmm(total_minutes: int) -> str:
    """Format minutes since midnight as "HH:MM", wrapping past midnight."""
    total_minutes %= MINUTES_PER_DAY
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def calculate_end_time(start_time: str, duration_minutes: int) -> str:
    """
    Calculate the end time of an appointment.

    Wraps past midnight with no day carry: the result is a bare "HH:MM".

    Args:
        start_time: Start time as "HH:MM"
        duration_minutes: Duration in whole minutes (>= 0)

    Returns:
        End time as "HH:MM"

    Raises:
        ValueError: If start_time is malformed or duration is negative

    Examples:
        >>> calculate_end_time("09:00", 60)
        '10:00'
        >>> calculate_end_time("23:00", 120)
        '01:00'
        >>> calculate_end_time("23:59", 1)
        '00:00'
    """
    if duration_minutes < 0:
        raise ValueError(f"Duration must be >= 0, got {duration_minutes}")
    return format_hhmm(parse_hhmm(start_time) + duration_minutes)


def times_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    """
    Check whether two half-open same-day intervals intersect.

    [start1, end1) and [start2, end2) overlap iff start1 < end2 and
    end1 > start2. Zero-padded "HH:MM" strings compare correctly as text.
    Touching intervals (end1 == start2) do not overlap.
    """
    return start1 < end2 and end1 > start2


def effective_end(start_time: str, end_time: str) -> str:
    """
    Clamp a wrapped end time to the end of the start's day.

    An appointment stored as 23:00-01:00 occupies the rest of its own day;
    comparing the raw "01:00" would make it look empty.
    """
    if end_time < start_time:
        return END_OF_DAY
    return end_time


def week_bounds(target: date) -> tuple[date, date]:
    """Return the Monday..Sunday week containing target."""
    monday = target - timedelta(days=target.weekday())
    return monday, monday + timedelta(days=6)


def day_name(target: date) -> str:
    """Lowercase English day name for a date ("monday" ... "sunday")."""
    return DAY_NAMES[target.weekday()]


def sunday_weekday(target: date) -> int:
    """Day of week with Sunday as 0 and Saturday as 6, as stored on breaks."""
    return (target.weekday() + 1) % 7
