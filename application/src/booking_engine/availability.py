"""
Availability decisions for a candidate appointment interval.

check_slot() is the single gate: slot listings call it through is_available()
to set each slot's flag, and the ledger calls it again right before committing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from . import clock
from .business_hours import BusinessHoursConfig
from .errors import ConflictError, OutOfHoursError, PastTimeError, BookingError
from .models import Appointment

logger = logging.getLogger(__name__)


def is_within_business_hours(
    owner_id: str,
    weekday: int,
    start_minutes: int,
    duration_minutes: int,
    config: BusinessHoursConfig,
) -> bool:
    """True if [start, start + duration) is a working day, inside the window and clear of lunch."""
    return _hours_violation(owner_id, weekday, start_minutes, duration_minutes, config) is None


def _hours_violation(
    owner_id: str,
    weekday: int,
    start_minutes: int,
    duration_minutes: int,
    config: BusinessHoursConfig,
) -> str | None:
    if config.owner_id != owner_id:
        return "business hours belong to another owner"
    if config.is_day_off(weekday):
        return "closed on this weekday"
    end_minutes = start_minutes + duration_minutes
    if start_minutes < config.open_minutes or end_minutes > config.close_minutes:
        return f"outside business hours {config.start_time}-{config.end_time}"
    lunch = config.lunch_break
    if lunch and clock.overlaps(start_minutes, end_minutes, lunch.start_minutes, lunch.end_minutes):
        return f"overlaps lunch break {lunch.start}-{lunch.end}"
    return None


def is_future(candidate: datetime, now: datetime) -> bool:
    return candidate > now


def find_conflict(
    owner_id: str,
    start: datetime,
    end: datetime,
    appointments: Iterable[Appointment],
    exclude_id: str | None = None,
) -> Appointment | None:
    """First scheduled/completed appointment of this owner overlapping [start, end), if any."""
    for appt in appointments:
        if appt.owner_id != owner_id or not appt.is_blocking:
            continue
        if exclude_id is not None and appt.id == exclude_id:
            continue
        if clock.overlaps(start, end, appt.scheduled_time, appt.end_time):
            return appt
    return None


def has_conflict(
    owner_id: str,
    start: datetime,
    end: datetime,
    appointments: Iterable[Appointment],
    exclude_id: str | None = None,
) -> bool:
    return find_conflict(owner_id, start, end, appointments, exclude_id) is not None


def check_slot(
    owner_id: str,
    start: datetime,
    duration_minutes: int,
    config: BusinessHoursConfig,
    appointments: Iterable[Appointment],
    *,
    exclude_id: str | None = None,
    require_future: bool = False,
    now: datetime | None = None,
    check_hours: bool = True,
) -> None:
    """
    Raise the specific reason a candidate interval cannot be booked, or return None.

    require_future is set by the public front end only; operators may backdate.
    check_hours=False skips containment (used when re-checking completed appointments).
    """
    if check_hours:
        problem = _hours_violation(owner_id, clock.weekday(start.date()), clock.minute_of_day(start), duration_minutes, config)
        if problem is not None:
            raise OutOfHoursError(f"{start:%Y-%m-%d %H:%M} is {problem}")
    if require_future and not is_future(start, now or datetime.now()):
        raise PastTimeError(f"{start:%Y-%m-%d %H:%M} is in the past")
    end = start + timedelta(minutes=duration_minutes)
    clash = find_conflict(owner_id, start, end, appointments, exclude_id)
    if clash is not None:
        raise ConflictError(
            f"{start:%H:%M}-{end:%H:%M} overlaps an existing appointment "
            f"({clash.scheduled_time:%H:%M}-{clash.end_time:%H:%M})"
        )


def is_available(
    owner_id: str,
    start: datetime,
    duration_minutes: int,
    config: BusinessHoursConfig,
    appointments: Iterable[Appointment],
    *,
    exclude_id: str | None = None,
    require_future: bool = False,
    now: datetime | None = None,
) -> bool:
    """check_slot() as a boolean."""
    try:
        check_slot(
            owner_id,
            start,
            duration_minutes,
            config,
            appointments,
            exclude_id=exclude_id,
            require_future=require_future,
            now=now,
        )
    except BookingError as exc:
        logger.debug("Slot %s unavailable for owner %s: %s", start, owner_id, exc.message)
        return False
    return True
