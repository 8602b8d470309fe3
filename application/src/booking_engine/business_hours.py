"""Per-owner working-hours policy: window, optional lunch break, days off."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from . import clock
from .errors import InvalidBusinessHours, InvalidTimeFormat

logger = logging.getLogger(__name__)

COLLECTION = "business_hours"
CONFIG_ID = "config"

DEFAULT_START = "09:00"
DEFAULT_END = "18:00"
DEFAULT_DAYS_OFF = frozenset({0})  # Sunday


@dataclass(frozen=True)
class LunchBreak:
    start: str
    end: str

    @property
    def start_minutes(self) -> int:
        return clock.to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return clock.to_minutes(self.end)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class BusinessHoursConfig:
    """Working window for one owner. Validated on construction through validate()."""
    owner_id: str
    start_time: str = DEFAULT_START
    end_time: str = DEFAULT_END
    days_off: frozenset[int] = field(default_factory=lambda: DEFAULT_DAYS_OFF)
    lunch_break: LunchBreak | None = None

    @property
    def open_minutes(self) -> int:
        return clock.to_minutes(self.start_time)

    @property
    def close_minutes(self) -> int:
        return clock.to_minutes(self.end_time)

    def is_day_off(self, weekday: int) -> bool:
        return weekday in self.days_off

    def validate(self) -> "BusinessHoursConfig":
        """Raise InvalidBusinessHours unless the window, lunch break and days off are consistent."""
        try:
            open_at, close_at = self.open_minutes, self.close_minutes
            lunch = (
                (self.lunch_break.start_minutes, self.lunch_break.end_minutes)
                if self.lunch_break
                else None
            )
        except InvalidTimeFormat as exc:
            raise InvalidBusinessHours(exc.message) from exc
        if open_at >= close_at:
            raise InvalidBusinessHours(f"start_time {self.start_time} must be before end_time {self.end_time}")
        if lunch is not None:
            lunch_start, lunch_end = lunch
            if lunch_start >= lunch_end:
                raise InvalidBusinessHours("Lunch break start must be before its end")
            if lunch_start < open_at or lunch_end > close_at:
                raise InvalidBusinessHours(
                    f"Lunch break {self.lunch_break.start}-{self.lunch_break.end} must lie within "
                    f"{self.start_time}-{self.end_time}"
                )
        for day in self.days_off:
            if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
                raise InvalidBusinessHours(f"Invalid weekday in days_off: {day!r}")
        return self

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "owner_id": self.owner_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "days_off": sorted(self.days_off),
        }
        if self.lunch_break:
            out["lunch_break"] = self.lunch_break.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BusinessHoursConfig":
        lunch = data.get("lunch_break")
        days_off = DEFAULT_DAYS_OFF if data.get("days_off") is None else data["days_off"]
        if isinstance(days_off, (str, bytes)) or not hasattr(days_off, "__iter__"):
            raise InvalidBusinessHours(f"Invalid days_off: {days_off!r}")
        # DynamoDB numbers come back as int; anything else (bools included) is rejected
        for day in days_off:
            if isinstance(day, bool) or not isinstance(day, int):
                raise InvalidBusinessHours(f"Invalid weekday in days_off: {day!r}")
        days = frozenset(days_off)
        return cls(
            owner_id=data["owner_id"],
            start_time=data.get("start_time") or DEFAULT_START,
            end_time=data.get("end_time") or DEFAULT_END,
            days_off=days,
            lunch_break=LunchBreak(start=lunch["start"], end=lunch["end"]) if lunch else None,
        )


def default_config(owner_id: str) -> BusinessHoursConfig:
    return BusinessHoursConfig(owner_id=owner_id)


def get_config(store, owner_id: str) -> BusinessHoursConfig:
    """Return the owner's config, creating and persisting the defaults on first read."""
    item = store.get_item(COLLECTION, owner_id, CONFIG_ID)
    if item is not None:
        return BusinessHoursConfig.from_dict(item)
    config = default_config(owner_id)
    if not store.put_item(COLLECTION, owner_id, CONFIG_ID, config.to_dict(), if_absent=True):
        # Another request created it first; use theirs.
        return BusinessHoursConfig.from_dict(store.get_item(COLLECTION, owner_id, CONFIG_ID))
    logger.info("Created default business hours for owner %s", owner_id)
    return config


_UNSET = object()


def update_config(
    store,
    owner_id: str,
    *,
    start_time: str | None = None,
    end_time: str | None = None,
    days_off: list[int] | set[int] | None = None,
    lunch_break: dict[str, str] | None | object = _UNSET,
) -> BusinessHoursConfig:
    """
    Merge a settings patch into the owner's config, validate, persist.

    Arguments left as None are not modified. lunch_break=None clears the lunch
    break; leaving it out keeps the current one. Existing appointments are not
    re-checked against the new hours.
    """
    current = get_config(store, owner_id)
    merged = current.to_dict()
    if start_time is not None:
        merged["start_time"] = start_time
    if end_time is not None:
        merged["end_time"] = end_time
    if days_off is not None:
        merged["days_off"] = list(days_off)
    if lunch_break is not _UNSET:
        if lunch_break is None:
            merged.pop("lunch_break", None)
        else:
            if not isinstance(lunch_break, dict) or "start" not in lunch_break or "end" not in lunch_break:
                raise InvalidBusinessHours("lunch_break needs start and end")
            merged["lunch_break"] = {"start": lunch_break["start"], "end": lunch_break["end"]}

    updated = BusinessHoursConfig.from_dict(merged).validate()
    store.put_item(COLLECTION, owner_id, CONFIG_ID, updated.to_dict())
    logger.info("Updated business hours for owner %s: %s", owner_id, updated.to_dict())
    return updated
