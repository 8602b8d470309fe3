"""Unit tests for availability: hours containment, conflicts, future check."""

from __future__ import annotations

from datetime import datetime

import pytest

from booking_engine import availability
from booking_engine.business_hours import BusinessHoursConfig, LunchBreak
from booking_engine.errors import ConflictError, OutOfHoursError, PastTimeError
from booking_engine.models import CANCELED, COMPLETED, NO_SHOW, SCHEDULED, Appointment

from conftest import NOW, OTHER_OWNER, OWNER, SUNDAY, at

CONFIG = BusinessHoursConfig(
    owner_id=OWNER,
    start_time="09:00",
    end_time="18:00",
    days_off=frozenset({0}),
    lunch_break=LunchBreak("12:00", "13:00"),
)


def _appt(start: datetime, minutes: int, status: str = SCHEDULED, owner: str = OWNER, appt_id: str = "a1") -> Appointment:
    return Appointment(
        id=appt_id,
        owner_id=owner,
        client_id="c1",
        service_id="s1",
        scheduled_time=start,
        duration_minutes=minutes,
        status=status,
    )


@pytest.mark.parametrize(
    "start,duration,expected",
    [
        (540, 45, True),     # 09:00 opening
        (1035, 45, True),    # 17:15-18:00 ends at close
        (1050, 45, False),   # runs past close
        (510, 45, False),    # before opening
        (690, 45, False),    # 11:30-12:15 runs into lunch
        (675, 45, True),     # 11:15-12:00 touches lunch
        (720, 30, False),    # inside lunch
        (780, 30, True),     # 13:00 right after lunch
    ],
)
def test_is_within_business_hours(start, duration, expected):
    assert availability.is_within_business_hours(OWNER, 2, start, duration, CONFIG) is expected


def test_day_off_and_foreign_config_rejected():
    assert not availability.is_within_business_hours(OWNER, 0, 600, 30, CONFIG)
    assert not availability.is_within_business_hours(OTHER_OWNER, 2, 600, 30, CONFIG)


def test_scenario_b_overlap_conflicts():
    existing = [_appt(at("10:00"), 45)]
    with pytest.raises(ConflictError):
        availability.check_slot(OWNER, at("10:30"), 30, CONFIG, existing)


def test_scenario_c_touching_is_accepted():
    existing = [_appt(at("10:00"), 30)]
    availability.check_slot(OWNER, at("10:30"), 30, CONFIG, existing)
    assert availability.is_available(OWNER, at("10:30"), 30, CONFIG, existing)
    assert availability.is_available(OWNER, at("09:30"), 30, CONFIG, existing)


@pytest.mark.parametrize("status,blocks", [(SCHEDULED, True), (COMPLETED, True), (CANCELED, False), (NO_SHOW, False)])
def test_only_scheduled_and_completed_block(status, blocks):
    existing = [_appt(at("10:00"), 60, status=status)]
    assert availability.has_conflict(OWNER, at("10:15"), at("10:45"), existing) is blocks


def test_other_owners_and_self_are_ignored():
    existing = [_appt(at("10:00"), 60, owner=OTHER_OWNER), _appt(at("14:00"), 60, appt_id="self")]
    assert not availability.has_conflict(OWNER, at("10:00"), at("11:00"), existing)
    assert not availability.has_conflict(OWNER, at("14:30"), at("15:30"), existing, exclude_id="self")
    assert availability.find_conflict(OWNER, at("14:30"), at("15:30"), existing).id == "self"


def test_out_of_hours_reported_before_conflict():
    with pytest.raises(OutOfHoursError):
        availability.check_slot(OWNER, at("09:00", SUNDAY), 30, CONFIG, [])
    with pytest.raises(OutOfHoursError):
        availability.check_slot(OWNER, at("11:30"), 45, CONFIG, [])


def test_future_required_only_when_asked():
    past = datetime(2026, 3, 2, 9, 0)
    availability.check_slot(OWNER, past, 30, CONFIG, [], now=NOW)
    with pytest.raises(PastTimeError):
        availability.check_slot(OWNER, past, 30, CONFIG, [], require_future=True, now=NOW)
    # the current instant itself is not in the future
    assert not availability.is_future(NOW, NOW)


def test_hours_check_can_be_skipped():
    availability.check_slot(OWNER, at("17:30"), 60, CONFIG, [], check_hours=False)
