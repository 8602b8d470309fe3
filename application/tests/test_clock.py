"""Unit tests for clock: HH:mm parsing, durations, overlap, weekdays."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from booking_engine import clock
from booking_engine.errors import InvalidTimeFormat


def test_to_minutes():
    assert clock.to_minutes("00:00") == 0
    assert clock.to_minutes("09:30") == 570
    assert clock.to_minutes("9:05") == 545
    assert clock.to_minutes("24:00") == 1440


@pytest.mark.parametrize("bad", ["", "9", "09:60", "25:00", "24:01", "ab:cd", None])
def test_to_minutes_rejects_malformed(bad):
    with pytest.raises(InvalidTimeFormat):
        clock.to_minutes(bad)


def test_to_hhmm_pads():
    assert clock.to_hhmm(0) == "00:00"
    assert clock.to_hhmm(545) == "09:05"
    assert clock.to_hhmm(1035) == "17:15"


def test_overlaps_is_half_open():
    assert clock.overlaps(600, 645, 630, 660)
    assert clock.overlaps(630, 660, 600, 645)
    # touching intervals do not overlap
    assert not clock.overlaps(600, 630, 630, 660)
    assert not clock.overlaps(630, 660, 600, 630)
    # containment
    assert clock.overlaps(600, 720, 630, 640)


def test_overlaps_works_on_datetimes():
    a0, a1 = datetime(2026, 3, 3, 10, 0), datetime(2026, 3, 3, 10, 45)
    b0, b1 = datetime(2026, 3, 3, 10, 30), datetime(2026, 3, 3, 11, 0)
    assert clock.overlaps(a0, a1, b0, b1)


def test_parse_duration_forms():
    assert clock.parse_duration(45) == 45
    assert clock.parse_duration("45") == 45
    assert clock.parse_duration("01:30") == 90
    assert clock.parse_duration("00:45:00") == 45
    assert clock.parse_duration("00:45:30") == 45  # seconds dropped


@pytest.mark.parametrize("bad", [0, -5, "0", "00:00:00", "abc", True, 4.5])
def test_parse_duration_rejects(bad):
    with pytest.raises(InvalidTimeFormat):
        clock.parse_duration(bad)


def test_format_duration():
    assert clock.format_duration(45) == "00:45:00"
    assert clock.format_duration(90) == "01:30:00"


def test_weekday_starts_on_sunday():
    assert clock.weekday(date(2026, 3, 8)) == 0  # Sunday
    assert clock.weekday(date(2026, 3, 2)) == 1  # Monday
    assert clock.weekday(date(2026, 3, 7)) == 6  # Saturday


def test_combine_and_parse_day():
    day = clock.parse_day("2026-03-03")
    assert clock.combine(day, "13:15") == datetime(2026, 3, 3, 13, 15)
    with pytest.raises(InvalidTimeFormat):
        clock.parse_day("03/03/2026")
