"""Bookable time slots for one day, recomputed on every call."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from . import clock
from .availability import is_available
from .business_hours import BusinessHoursConfig
from .models import Appointment

DEFAULT_STEP_MINUTES = 30


@dataclass
class TimeSlot:
    """A candidate start time on a specific day."""
    time: str  # HH:mm
    available: bool

    def to_dict(self) -> dict[str, object]:
        return {"time": self.time, "available": self.available}


def step_minutes() -> int:
    return int(os.environ.get("SLOT_STEP_MINUTES", DEFAULT_STEP_MINUTES))


def generate(
    owner_id: str,
    day: date,
    duration_minutes: int,
    config: BusinessHoursConfig,
    appointments: Iterable[Appointment],
    step: int | None = None,
    *,
    require_future: bool = False,
    now: datetime | None = None,
) -> list[TimeSlot]:
    """
    Walk the business day at `step` granularity and tag each start free/taken.

    A start that falls inside the lunch break jumps straight to the end of lunch.
    Starts before lunch whose interval runs into it are still listed, as unavailable.
    """
    step = step or step_minutes()
    if step <= 0:
        raise ValueError("step must be positive")
    if config.is_day_off(clock.weekday(day)):
        return []

    appointments = list(appointments)
    midnight = datetime.combine(day, datetime.min.time())
    lunch = config.lunch_break
    slots: list[TimeSlot] = []

    t = config.open_minutes
    while t + duration_minutes <= config.close_minutes:
        if lunch and lunch.start_minutes <= t < lunch.end_minutes:
            t = lunch.end_minutes
            continue
        start = midnight + timedelta(minutes=t)
        available = is_available(
            owner_id,
            start,
            duration_minutes,
            config,
            appointments,
            require_future=require_future,
            now=now,
        )
        slots.append(TimeSlot(time=clock.to_hhmm(t), available=available))
        t += step
    return slots
