"""Unit tests for the appointment ledger: booking, edits, status saga with income records."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from booking_engine import finance
from booking_engine.errors import (
    ConflictError,
    InvalidRequest,
    NotFoundError,
    OrphanedFinancialRecordWarning,
    OutOfHoursError,
)
from booking_engine.ledger import AppointmentLedger, income_record_id
from booking_engine.models import CANCELED, COMPLETED, NO_SHOW, SCHEDULED

from conftest import OTHER_OWNER, OWNER, SUNDAY, TUESDAY, at


def _records(store, appointment_id):
    return finance.find_by_linked_appointment_id(store, OWNER, appointment_id)


def test_create_persists_scheduled_appointment(ledger, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"), notes="  first visit ")
    assert appt.status == SCHEDULED
    assert appt.final_price == 100.0
    assert appt.duration_minutes == 45
    assert appt.end_time == at("10:45")
    assert appt.notes == "first visit"
    assert appt.revision == 0

    stored = ledger.get(OWNER, appt.id)
    assert stored == appt


@pytest.mark.parametrize("start", [at("08:30"), at("17:30"), at("11:30"), at("12:15"), at("10:00", SUNDAY)])
def test_create_outside_hours_rejected(ledger, client, haircut, start):
    with pytest.raises(OutOfHoursError):
        ledger.create(OWNER, client.id, haircut, start)
    assert ledger.appointments_for_day(OWNER, start.date()) == []


def test_create_conflict_rejected(ledger, client, haircut, trim):
    ledger.create(OWNER, client.id, haircut, at("10:00"))
    with pytest.raises(ConflictError):
        ledger.create(OWNER, client.id, trim, at("10:30"))
    # touching is fine
    ledger.create(OWNER, client.id, trim, at("10:45"))
    assert len(ledger.appointments_for_day(OWNER, TUESDAY)) == 2


def test_owners_do_not_block_each_other(ledger, store, client, haircut):
    from booking_engine import catalog, customers

    ledger.create(OWNER, client.id, haircut, at("10:00"))
    other_service = catalog.add_service(store, OTHER_OWNER, "Massage", 60, 80)
    other_client = customers.find_or_create_by_phone(store, OTHER_OWNER, "Bruno", "+1 555 000 1111")
    appt = ledger.create(OTHER_OWNER, other_client.id, other_service, at("10:00"))
    assert appt.owner_id == OTHER_OWNER
    with pytest.raises(NotFoundError):
        ledger.get(OWNER, appt.id)


def test_create_rejects_foreign_service(ledger, store, client):
    from booking_engine import catalog

    foreign = catalog.add_service(store, OTHER_OWNER, "Massage", 60, 80)
    with pytest.raises(NotFoundError):
        ledger.create(OWNER, client.id, foreign, at("10:00"))


@pytest.mark.parametrize("price,discount", [(-1, None), ("abc", None), (100, 1.5), (100, -0.1)])
def test_create_rejects_bad_money(ledger, client, haircut, price, discount):
    with pytest.raises(InvalidRequest):
        ledger.create(OWNER, client.id, haircut, at("10:00"), final_price=price, discount=discount)


def test_duration_override_extends_interval(ledger, client, haircut, trim):
    appt = ledger.create(OWNER, client.id, haircut, at("09:00"), duration_override="01:30")
    assert appt.effective_duration == 90
    with pytest.raises(ConflictError):
        ledger.create(OWNER, client.id, trim, at("10:00"))


def test_update_reschedule_ignores_own_slot(ledger, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    moved = ledger.update(OWNER, appt.id, {"scheduled_time": "2026-03-03T10:15:00"})
    assert moved.scheduled_time == at("10:15")
    assert moved.revision == 1
    assert ledger.get(OWNER, appt.id).scheduled_time == at("10:15")


def test_update_into_conflict_or_out_of_hours_rejected(ledger, client, haircut, trim):
    first = ledger.create(OWNER, client.id, haircut, at("10:00"))
    second = ledger.create(OWNER, client.id, trim, at("14:00"))
    with pytest.raises(ConflictError):
        ledger.update(OWNER, second.id, {"scheduled_time": at("10:30")})
    with pytest.raises(OutOfHoursError):
        ledger.update(OWNER, second.id, {"scheduled_time": at("12:00")})
    with pytest.raises(ConflictError):
        ledger.update(OWNER, second.id, {"scheduled_time": at("09:30"), "duration_override": 60})
    # 10:00 + 5h runs through lunch
    with pytest.raises(OutOfHoursError):
        ledger.update(OWNER, first.id, {"duration_override": 300})
    assert ledger.get(OWNER, second.id).scheduled_time == at("14:00")


def test_update_service_change_rechecks_duration(ledger, store, client, haircut, trim):
    from booking_engine import catalog

    long_service = catalog.add_service(store, OWNER, "Coloring", 120, 200)
    appt = ledger.create(OWNER, client.id, trim, at("09:00"))
    ledger.create(OWNER, client.id, haircut, at("10:00"))
    with pytest.raises(ConflictError):
        ledger.update(OWNER, appt.id, {"service_id": long_service.id})
    updated = ledger.update(OWNER, appt.id, {"service_id": haircut.id})
    assert updated.duration_minutes == 45


def test_update_non_timing_fields(ledger, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    updated = ledger.update(OWNER, appt.id, {"notes": "bring photos", "final_price": 80, "discount": 0.25})
    assert updated.notes == "bring photos"
    assert updated.final_price == 80.0
    assert updated.discount == 0.25
    # unchanged patch is a no-op
    again = ledger.update(OWNER, appt.id, {"notes": "bring photos"})
    assert again.revision == updated.revision


def test_update_rejects_unknown_fields(ledger, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    with pytest.raises(InvalidRequest):
        ledger.update(OWNER, appt.id, {"owner_id": OTHER_OWNER})
    with pytest.raises(NotFoundError):
        ledger.update(OWNER, appt.id, {"client_id": "tel-000"})


def test_complete_writes_one_income_record(ledger, store, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"), final_price=100, discount=0.1)
    done = ledger.set_status(OWNER, appt.id, COMPLETED)
    assert done.status == COMPLETED
    assert done.financial_record_id == income_record_id(appt.id)

    records = _records(store, appt.id)
    assert len(records) == 1
    assert records[0].amount == 90.0
    assert records[0].client_id == client.id
    assert records[0].memo == "Haircut - 2026-03-03 10:00"
    assert records[0].transaction_date == "2026-03-03"

    # same status again does nothing
    ledger.set_status(OWNER, appt.id, COMPLETED)
    assert len(_records(store, appt.id)) == 1


def test_scenario_d_complete_then_cancel_removes_income(ledger, store, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"), final_price=100)
    ledger.set_status(OWNER, appt.id, COMPLETED)
    assert len(_records(store, appt.id)) == 1

    canceled = ledger.set_status(OWNER, appt.id, CANCELED)
    assert canceled.status == CANCELED
    assert canceled.financial_record_id is None
    assert _records(store, appt.id) == []


def test_complete_cancel_complete_keeps_single_record(ledger, store, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    for status in (COMPLETED, SCHEDULED, COMPLETED, NO_SHOW, COMPLETED):
        ledger.set_status(OWNER, appt.id, status)
    assert len(_records(store, appt.id)) == 1


def test_leaving_completed_without_record_warns(ledger, store, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    ledger.set_status(OWNER, appt.id, COMPLETED)
    finance.delete_record(store, OWNER, income_record_id(appt.id))

    with pytest.warns(OrphanedFinancialRecordWarning):
        updated = ledger.set_status(OWNER, appt.id, SCHEDULED)
    assert updated.status == SCHEDULED


def test_income_failure_reverts_status(ledger, store, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    with patch.object(finance, "append_income", side_effect=RuntimeError("ledger down")):
        with pytest.raises(RuntimeError):
            ledger.set_status(OWNER, appt.id, COMPLETED)
    current = ledger.get(OWNER, appt.id)
    assert current.status == SCHEDULED
    assert current.financial_record_id is None
    assert _records(store, appt.id) == []


def test_canceled_slot_can_be_rebooked_and_reopen_is_checked(ledger, client, haircut):
    first = ledger.create(OWNER, client.id, haircut, at("10:00"))
    ledger.set_status(OWNER, first.id, CANCELED)
    ledger.create(OWNER, client.id, haircut, at("10:00"))
    with pytest.raises(ConflictError):
        ledger.set_status(OWNER, first.id, SCHEDULED)
    assert ledger.get(OWNER, first.id).status == CANCELED


def test_completion_with_longer_duration_cannot_overrun(ledger, store, client, haircut, trim):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    ledger.create(OWNER, client.id, trim, at("11:00"))
    with pytest.raises(ConflictError):
        ledger.set_status(OWNER, appt.id, COMPLETED, duration_override=90)
    assert ledger.get(OWNER, appt.id).status == SCHEDULED
    assert _records(store, appt.id) == []

    done = ledger.set_status(OWNER, appt.id, COMPLETED, duration_override=60)
    assert done.effective_duration == 60


def test_back_to_scheduled_with_longer_duration_is_rechecked(ledger, store, client, haircut, trim):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    ledger.create(OWNER, client.id, trim, at("11:00"))
    ledger.set_status(OWNER, appt.id, COMPLETED)

    # 10:00-12:00 runs into the 11:00 trim
    with pytest.raises(ConflictError):
        ledger.set_status(OWNER, appt.id, SCHEDULED, duration_override=120)
    # 10:00-12:30 runs into lunch
    with pytest.raises(OutOfHoursError):
        ledger.set_status(OWNER, appt.id, SCHEDULED, duration_override=150)

    current = ledger.get(OWNER, appt.id)
    assert current.status == COMPLETED
    assert current.effective_duration == 45
    assert len(_records(store, appt.id)) == 1

    reopened = ledger.set_status(OWNER, appt.id, SCHEDULED, duration_override=60)
    assert reopened.status == SCHEDULED
    assert reopened.end_time == at("11:00")
    assert _records(store, appt.id) == []


def test_failed_status_write_restores_income(ledger, store, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"), final_price=100)
    ledger.set_status(OWNER, appt.id, COMPLETED)

    with patch.object(store, "transact", side_effect=RuntimeError("throttled")):
        with pytest.raises(RuntimeError):
            ledger.set_status(OWNER, appt.id, CANCELED)

    current = ledger.get(OWNER, appt.id)
    assert current.status == COMPLETED
    assert current.financial_record_id == income_record_id(appt.id)
    records = _records(store, appt.id)
    assert [r.id for r in records] == [income_record_id(appt.id)]
    assert records[0].amount == 100.0


def test_unknown_status_rejected(ledger, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    with pytest.raises(InvalidRequest):
        ledger.set_status(OWNER, appt.id, "done")
    with pytest.raises(InvalidRequest):
        ledger.update(OWNER, appt.id, {"status": "done"})


def test_update_can_carry_status(ledger, store, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    done = ledger.update(OWNER, appt.id, {"final_price": 120, "status": COMPLETED})
    assert done.status == COMPLETED
    assert _records(store, appt.id)[0].amount == 120.0


def test_delete_removes_paired_income(ledger, store, client, haircut):
    appt = ledger.create(OWNER, client.id, haircut, at("10:00"))
    ledger.set_status(OWNER, appt.id, COMPLETED)
    ledger.delete(OWNER, appt.id)
    with pytest.raises(NotFoundError):
        ledger.get(OWNER, appt.id)
    assert _records(store, appt.id) == []
    with pytest.raises(NotFoundError):
        ledger.delete(OWNER, appt.id)


def test_list_for_owner_filters(ledger, store, client, haircut, trim):
    from booking_engine import customers

    bruno = customers.find_or_create_by_phone(store, OWNER, "Bruno Lima", "+55 11 98888-0000")
    a = ledger.create(OWNER, client.id, haircut, at("10:00"))
    b = ledger.create(OWNER, bruno.id, trim, at("14:00"))
    ledger.set_status(OWNER, b.id, CANCELED)

    start, end = at("00:00"), at("23:59")
    assert [x.id for x in ledger.list_for_owner(OWNER, start, end)] == [a.id, b.id]
    assert [x.id for x in ledger.list_for_owner(OWNER, start, end, status=CANCELED)] == [b.id]
    assert [x.id for x in ledger.list_for_owner(OWNER, start, end, search="bruno")] == [b.id]
    assert [x.id for x in ledger.list_for_owner(OWNER, start, end, search="HAIRCUT")] == [a.id]
    assert [x.id for x in ledger.list_for_owner(OWNER, start, end, client_id=client.id)] == [a.id]
    assert ledger.list_for_owner(OWNER, at("00:00", SUNDAY), at("23:00", SUNDAY)) == []
    with pytest.raises(InvalidRequest):
        ledger.list_for_owner(OWNER, start, end, status="archived")


def test_ledger_reads_hours_at_commit_time(store, clock_now, client, haircut):
    from booking_engine import business_hours

    ledger = AppointmentLedger(store, now=clock_now)
    business_hours.update_config(store, OWNER, start_time="11:00")
    with pytest.raises(OutOfHoursError):
        ledger.create(OWNER, client.id, haircut, at("10:00"))
