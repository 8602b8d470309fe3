"""Shared fixtures: in-memory store, a fixed clock and one seeded owner."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from booking_engine import business_hours, catalog, customers
from booking_engine.ledger import AppointmentLedger
from booking_engine.store import MemoryStore

OWNER = "owner-1"
OTHER_OWNER = "owner-2"

# Monday 2026-03-02, 10:00 local
NOW = datetime(2026, 3, 2, 10, 0)
TUESDAY = date(2026, 3, 3)
SUNDAY = date(2026, 3, 8)


def at(hhmm: str, day: date = TUESDAY) -> datetime:
    hours, minutes = hhmm.split(":")
    return datetime(day.year, day.month, day.day, int(hours), int(minutes))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock_now():
    return lambda: NOW


@pytest.fixture
def hours(store):
    """09:00-18:00, lunch 12:00-13:00, closed Sundays."""
    return business_hours.update_config(
        store,
        OWNER,
        start_time="09:00",
        end_time="18:00",
        days_off=[0],
        lunch_break={"start": "12:00", "end": "13:00"},
    )


@pytest.fixture
def haircut(store):
    return catalog.add_service(store, OWNER, "Haircut", 45, 100.0, service_id="svc-haircut")


@pytest.fixture
def trim(store):
    return catalog.add_service(store, OWNER, "Beard trim", "00:30:00", 50.0, service_id="svc-trim")


@pytest.fixture
def client(store):
    return customers.find_or_create_by_phone(store, OWNER, "Ana Souza", "+55 11 99999-0000")


@pytest.fixture
def ledger(store, clock_now, hours):
    return AppointmentLedger(store, now=clock_now)
