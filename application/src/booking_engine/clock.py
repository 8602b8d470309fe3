"""Pure time arithmetic: HH:mm <-> minutes-of-day, interval overlap, durations."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta

from .errors import InvalidTimeFormat

MINUTES_PER_DAY = 24 * 60

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")
_DURATION = re.compile(r"^(\d{1,3}):(\d{1,2})(?::(\d{1,2}))?$")


def to_minutes(hhmm: str) -> int:
    """Parse "HH:mm" into minutes since midnight. "24:00" is accepted as end of day."""
    match = _HHMM.match((hhmm or "").strip()) if isinstance(hhmm, str) else None
    if not match:
        raise InvalidTimeFormat(f"Expected HH:mm, got {hhmm!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise InvalidTimeFormat(f"Time out of range: {hhmm!r}")
    return hours * 60 + minutes


def to_hhmm(minutes: int) -> str:
    """Format minutes since midnight as zero-padded "HH:mm"."""
    if minutes < 0 or minutes > MINUTES_PER_DAY:
        raise InvalidTimeFormat(f"Minute of day out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def overlaps(start_a: int | datetime, end_a: int | datetime, start_b: int | datetime, end_b: int | datetime) -> bool:
    """Half-open interval intersection. Touching intervals (end_a == start_b) do not overlap."""
    return start_a < end_b and start_b < end_a


def parse_duration(value: int | str) -> int:
    """
    Normalize a duration to whole minutes.

    Accepts integer minutes, "HH:mm" or "HH:mm:ss" (seconds are dropped).
    """
    if isinstance(value, bool):
        raise InvalidTimeFormat(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        minutes = value
    elif isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            minutes = int(text)
        else:
            match = _DURATION.match(text)
            if not match:
                raise InvalidTimeFormat(f"Invalid duration: {value!r}")
            minutes = int(match.group(1)) * 60 + int(match.group(2))
    else:
        raise InvalidTimeFormat(f"Invalid duration: {value!r}")
    if minutes <= 0:
        raise InvalidTimeFormat(f"Duration must be positive: {value!r}")
    return minutes


def format_duration(minutes: int) -> str:
    """Catalog display form: "HH:mm:ss"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}:00"


def weekday(day: date) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def combine(day: date, hhmm: str) -> datetime:
    """Local datetime for a day and an "HH:mm" wall-clock time."""
    return datetime.combine(day, datetime.min.time()) + timedelta(minutes=to_minutes(hhmm))


def parse_day(value: str) -> date:
    """Parse "YYYY-MM-DD"."""
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise InvalidTimeFormat(f"Expected YYYY-MM-DD, got {value!r}") from exc
