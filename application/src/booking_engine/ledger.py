"""
Authoritative appointment collection for an owner.

Invariants kept here:
- scheduled/completed appointments of one owner never overlap (half-open intervals);
- a scheduled appointment fits the owner's business hours in effect when it was booked;
- a completed appointment has at most one paired income record, removed when it
  stops being completed.

Writes that occupy calendar time re-run availability.check_slot() and commit in one
transaction with a per-(owner, day) version bump. A concurrent commit for the same
day invalidates the version, and the check is re-run on fresh data.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import uuid
import warnings
from datetime import date, datetime, timedelta
from typing import Any, Callable

from . import business_hours, catalog, clock, customers, finance
from .availability import check_slot
from .errors import (
    ConflictError,
    InvalidRequest,
    NotFoundError,
    OrphanedFinancialRecordWarning,
)
from .models import (
    CANCELED,
    COMPLETED,
    NO_SHOW,
    SCHEDULED,
    SOURCE_INTERNAL,
    STATUSES,
    Appointment,
    Service,
)
from .store import StaleWrite, VersionGuard, Write

logger = logging.getLogger(__name__)

COLLECTION = "appointments"
LOCKS = "calendar_locks"
DEFAULT_COMMIT_ATTEMPTS = 3

RELEASED_STATUSES = frozenset({CANCELED, NO_SHOW})

_EDITABLE = ("scheduled_time", "duration_override", "service_id", "client_id", "final_price", "discount", "notes")
_TIMING = ("scheduled_time", "duration_override", "service_id")


def _commit_attempts() -> int:
    return max(1, int(os.environ.get("COMMIT_ATTEMPTS", DEFAULT_COMMIT_ATTEMPTS)))


def _day_lock_id(day: date) -> str:
    return f"day#{day.isoformat()}"


def income_record_id(appointment_id: str) -> str:
    """Deterministic id of the income record paired with an appointment."""
    return f"appointment-{appointment_id}"


def _validate_money(final_price: Any, discount: Any) -> tuple[float, float | None]:
    try:
        price = float(final_price)
    except (TypeError, ValueError) as exc:
        raise InvalidRequest(f"Invalid final_price: {final_price!r}") from exc
    if price < 0:
        raise InvalidRequest("final_price must be >= 0")
    if discount is None:
        return price, None
    try:
        fraction = float(discount)
    except (TypeError, ValueError) as exc:
        raise InvalidRequest(f"Invalid discount: {discount!r}") from exc
    if not 0 <= fraction <= 1:
        raise InvalidRequest("discount is a fraction between 0 and 1")
    return price, fraction or None


def _parse_time(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    try:
        return datetime.fromisoformat(str(value)).replace(second=0, microsecond=0, tzinfo=None)
    except ValueError as exc:
        raise InvalidRequest(f"Invalid scheduled_time: {value!r}") from exc


def _diff(before: Appointment, after: Appointment) -> dict[str, Any]:
    """Changed storage fields; fields that disappeared map to None (removed)."""
    old, new = before.to_item(), after.to_item()
    out = {k: v for k, v in new.items() if old.get(k) != v}
    out.update({k: None for k in old if k not in new})
    return out


class AppointmentLedger:
    """Create/update/delete/status transitions over one store. All calls take an explicit owner id."""

    def __init__(self, store, now: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self._now = now or datetime.now

    # ── Reads ────────────────────────────────────────────────────────────

    def get(self, owner_id: str, appointment_id: str) -> Appointment:
        item = self.store.get_item(COLLECTION, owner_id, appointment_id)
        if item is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return Appointment.from_item(item)

    def appointments_between(
        self, owner_id: str, start: datetime, end: datetime, **equals: Any
    ) -> list[Appointment]:
        items = self.store.query_items(
            COLLECTION,
            owner_id,
            equals={k: v for k, v in equals.items() if v is not None} or None,
            between=("scheduled_time", start.isoformat(), end.isoformat()),
        )
        return sorted((Appointment.from_item(i) for i in items), key=lambda a: a.scheduled_time)

    def appointments_for_day(self, owner_id: str, day: date) -> list[Appointment]:
        """Every appointment starting on `day`, any status. Snapshot for slot generation."""
        midnight = datetime.combine(day, datetime.min.time())
        return self.appointments_between(owner_id, midnight, midnight + timedelta(days=1))

    def list_for_owner(
        self,
        owner_id: str,
        start: datetime,
        end: datetime,
        status: str | None = None,
        search: str | None = None,
        client_id: str | None = None,
        service_id: str | None = None,
    ) -> list[Appointment]:
        """
        Appointments with start in [start, end), oldest first.

        search matches the client's name or the service's name, case-insensitively.
        """
        if status is not None and status not in STATUSES:
            raise InvalidRequest(f"Unknown status: {status!r}")
        appointments = self.appointments_between(
            owner_id, start, end, status=status, client_id=client_id, service_id=service_id
        )
        term = (search or "").strip().lower()
        if not term:
            return appointments

        names: dict[tuple[str, str], str] = {}

        def _name(kind: str, ref_id: str) -> str:
            if (kind, ref_id) not in names:
                try:
                    if kind == "client":
                        names[(kind, ref_id)] = customers.get_client(self.store, owner_id, ref_id).full_name
                    else:
                        names[(kind, ref_id)] = catalog.get_by_id(self.store, owner_id, ref_id).name
                except NotFoundError:
                    names[(kind, ref_id)] = ""
            return names[(kind, ref_id)].lower()

        return [
            a for a in appointments
            if term in _name("client", a.client_id) or term in _name("service", a.service_id)
        ]

    # ── Writes ───────────────────────────────────────────────────────────

    def create(
        self,
        owner_id: str,
        client_id: str,
        service: Service,
        start: datetime,
        *,
        notes: str | None = None,
        final_price: float | None = None,
        discount: float | None = None,
        duration_override: int | str | None = None,
        source: str = SOURCE_INTERNAL,
        booking_link_id: str | None = None,
        require_future: bool = False,
    ) -> Appointment:
        """Re-check availability against the current ledger and persist a new scheduled appointment."""
        if service.owner_id != owner_id:
            raise NotFoundError(f"Service {service.id} not found")
        price, fraction = _validate_money(service.price if final_price is None else final_price, discount)
        now = self._now().replace(microsecond=0)
        appt = Appointment(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            client_id=client_id,
            service_id=service.id,
            scheduled_time=_parse_time(start),
            duration_minutes=service.duration_minutes,
            duration_override=clock.parse_duration(duration_override) if duration_override else None,
            status=SCHEDULED,
            final_price=price,
            discount=fraction,
            notes=(notes or "").strip() or None,
            source=source,
            booking_link_id=booking_link_id,
            created_at=now,
            updated_at=now,
        )
        self._commit(None, appt, {"check_hours": True, "require_future": require_future})
        logger.info(
            "Booked %s for owner %s at %s (%d min, source=%s)",
            appt.id, owner_id, appt.scheduled_time, appt.effective_duration, source,
        )
        return appt

    def update(self, owner_id: str, appointment_id: str, patch: dict[str, Any]) -> Appointment:
        """
        Patch editable fields. A change of time, duration override or service re-checks
        the interval, ignoring the appointment's own current slot. A "status" key is
        applied afterwards through set_status().
        """
        patch = dict(patch)
        status = patch.pop("status", None)
        unknown = set(patch) - set(_EDITABLE)
        if unknown:
            raise InvalidRequest(f"Not editable: {', '.join(sorted(unknown))}")

        current = self.get(owner_id, appointment_id)
        changes: dict[str, Any] = {}
        if "scheduled_time" in patch:
            changes["scheduled_time"] = _parse_time(patch["scheduled_time"])
        if "duration_override" in patch:
            value = patch["duration_override"]
            changes["duration_override"] = clock.parse_duration(value) if value else None
        if "service_id" in patch and patch["service_id"] != current.service_id:
            service = catalog.get_by_id(self.store, owner_id, patch["service_id"])
            changes["service_id"] = service.id
            changes["duration_minutes"] = service.duration_minutes
        if "client_id" in patch and patch["client_id"] != current.client_id:
            if not patch["client_id"]:
                raise InvalidRequest("client_id cannot be empty")
            changes["client_id"] = customers.get_client(self.store, owner_id, patch["client_id"]).id
        if "notes" in patch:
            changes["notes"] = (patch["notes"] or "").strip() or None
        if "final_price" in patch or "discount" in patch:
            price, fraction = _validate_money(
                patch.get("final_price", current.final_price), patch.get("discount", current.discount)
            )
            changes["final_price"] = price
            changes["discount"] = fraction

        updated = current
        candidate = dataclasses.replace(current, **changes)
        if _diff(current, candidate):
            timing_changed = any(getattr(candidate, f) != getattr(current, f) for f in _TIMING) or (
                candidate.duration_minutes != current.duration_minutes
            )
            options = self._occupancy_options(candidate) if timing_changed else None
            candidate = self._stamp(candidate)
            updated = self._commit(current, candidate, options)
            logger.info("Updated appointment %s for owner %s: %s", appointment_id, owner_id, sorted(changes))

        if status is not None and status != updated.status:
            return self.set_status(owner_id, appointment_id, status)
        return updated

    def set_status(
        self,
        owner_id: str,
        appointment_id: str,
        status: str,
        *,
        duration_override: int | str | None = None,
    ) -> Appointment:
        """
        Move an appointment through scheduled/completed/canceled/no_show.

        Setting the current status again is a no-op. Leaving 'completed' removes the
        paired income record first; entering it writes exactly one.
        """
        if status not in STATUSES:
            raise InvalidRequest(f"Unknown status: {status!r}")
        override = clock.parse_duration(duration_override) if duration_override else None
        current = self.get(owner_id, appointment_id)

        if status == current.status:
            if override is None or override == current.duration_override:
                return current
            return self.update(owner_id, appointment_id, {"duration_override": override})

        if current.status == COMPLETED:
            return self._leave_completed(current, status, override)
        if status == COMPLETED:
            return self._complete(current, override)

        candidate = dataclasses.replace(current, status=status)
        if override is not None:
            candidate.duration_override = override
        options = self._occupancy_options(candidate) if current.status in RELEASED_STATUSES else None
        updated = self._commit(current, self._stamp(candidate), options)
        logger.info("Appointment %s: %s -> %s", appointment_id, current.status, status)
        return updated

    def delete(self, owner_id: str, appointment_id: str) -> None:
        """Remove the appointment and any paired income record, whatever the status."""
        current = self.get(owner_id, appointment_id)
        self._remove_income(current, warn=False)
        self.store.delete_item(COLLECTION, owner_id, appointment_id)
        logger.info("Deleted appointment %s for owner %s", appointment_id, owner_id)

    # ── Status saga ──────────────────────────────────────────────────────

    def _complete(self, current: Appointment, override: int | None) -> Appointment:
        """Mark completed, then append the paired income record; revert the status if that fails."""
        candidate = dataclasses.replace(
            current,
            status=COMPLETED,
            duration_override=override or current.duration_override,
            financial_record_id=income_record_id(current.id),
        )
        if current.status in RELEASED_STATUSES:
            options = self._occupancy_options(dataclasses.replace(candidate, status=SCHEDULED))
        elif candidate.effective_duration > current.effective_duration:
            # Ran longer than planned: must not run into the next appointment.
            options = {"check_hours": False}
        else:
            options = None
        completed = self._commit(current, self._stamp(candidate), options)

        try:
            finance.append_income(
                self.store,
                completed.owner_id,
                completed.income_amount(),
                completed.id,
                self._memo(completed),
                client_id=completed.client_id,
                transaction_date=completed.scheduled_time,
                record_id=completed.financial_record_id,
            )
        except Exception:
            logger.exception("Income record for appointment %s failed; reverting to %s", completed.id, current.status)
            reverted = dataclasses.replace(current, updated_at=completed.updated_at, revision=completed.revision)
            self._commit(completed, self._stamp(reverted), None)
            raise
        logger.info("Appointment %s: %s -> completed", completed.id, current.status)
        return completed

    def _leave_completed(self, current: Appointment, status: str, override: int | None) -> Appointment:
        """Delete the paired income record, then apply the new status; restore the record on failure."""
        removed = self._remove_income(current, warn=True)
        candidate = dataclasses.replace(current, status=status, financial_record_id=None)
        if override is not None:
            candidate.duration_override = override
        options = None
        if status == SCHEDULED and candidate.effective_duration != current.effective_duration:
            options = self._occupancy_options(candidate)
        try:
            updated = self._commit(current, self._stamp(candidate), options)
        except Exception as exc:
            logger.warning("Appointment %s: completed -> %s not applied (%r)", current.id, status, exc)
            if removed and self.get(current.owner_id, current.id).status == COMPLETED:
                finance.append_income(
                    self.store,
                    current.owner_id,
                    current.income_amount(),
                    current.id,
                    self._memo(current),
                    client_id=current.client_id,
                    transaction_date=current.scheduled_time,
                    record_id=current.financial_record_id or income_record_id(current.id),
                )
            raise
        logger.info("Appointment %s: completed -> %s", current.id, status)
        return updated

    def _remove_income(self, appt: Appointment, *, warn: bool) -> bool:
        """Delete the income record paired with `appt`. Returns False if there was none."""
        if appt.financial_record_id and finance.delete_record(self.store, appt.owner_id, appt.financial_record_id):
            return True
        try:
            finance.delete_by_linked_appointment_id(self.store, appt.owner_id, appt.id)
            return True
        except NotFoundError:
            if warn:
                message = f"Appointment {appt.id} was completed but had no paired income record"
                logger.warning(message)
                warnings.warn(message, OrphanedFinancialRecordWarning, stacklevel=4)
            return False

    def _memo(self, appt: Appointment) -> str:
        try:
            name = catalog.get_by_id(self.store, appt.owner_id, appt.service_id).name
        except NotFoundError:
            name = appt.service_id
        return f"{name} - {appt.scheduled_time:%Y-%m-%d %H:%M}"

    # ── Commit path ──────────────────────────────────────────────────────

    @staticmethod
    def _occupancy_options(candidate: Appointment) -> dict[str, Any] | None:
        """What to re-check for a candidate's interval, by the status it will have."""
        if candidate.status == SCHEDULED:
            return {"check_hours": True}
        if candidate.status == COMPLETED:
            return {"check_hours": False}
        return None

    def _stamp(self, candidate: Appointment) -> Appointment:
        return dataclasses.replace(
            candidate,
            updated_at=self._now().replace(microsecond=0),
            revision=candidate.revision + 1,
        )

    def _commit(
        self, current: Appointment | None, candidate: Appointment, options: dict[str, Any] | None
    ) -> Appointment:
        """
        Write `candidate` over `current` (None = new record).

        options=None writes without an availability check. Otherwise check_slot()
        runs with those options against a fresh snapshot of the candidate's day, and
        the write commits only if no other commit touched that day in between.
        """
        owner_id = candidate.owner_id
        if current is None:
            write = Write(COLLECTION, owner_id, candidate.id, candidate.to_item(), op="put", expect={"id": None})
        else:
            write = Write(
                COLLECTION, owner_id, candidate.id, _diff(current, candidate),
                op="update", expect={"revision": current.revision},
            )

        if options is None:
            try:
                self.store.transact([write])
            except StaleWrite as exc:
                raise ConflictError(f"Appointment {candidate.id} was modified concurrently") from exc
            return candidate

        day = candidate.scheduled_time.date()
        lock_id = _day_lock_id(day)
        attempts = _commit_attempts()
        for attempt in range(1, attempts + 1):
            version = self.store.get_version(LOCKS, owner_id, lock_id)
            config = business_hours.get_config(self.store, owner_id)
            existing = self.appointments_for_day(owner_id, day)
            check_slot(
                owner_id,
                candidate.scheduled_time,
                candidate.effective_duration,
                config,
                existing,
                exclude_id=candidate.id,
                now=self._now(),
                **options,
            )
            try:
                self.store.transact([write], [VersionGuard(LOCKS, owner_id, lock_id, version)])
                return candidate
            except StaleWrite as exc:
                if current is not None and self._revision(owner_id, candidate.id) != current.revision:
                    raise ConflictError(f"Appointment {candidate.id} was modified concurrently") from exc
                logger.info(
                    "Concurrent write on owner %s day %s (attempt %d/%d); re-checking",
                    owner_id, day, attempt, attempts,
                )
        raise ConflictError(f"Calendar for {day} kept changing; try another slot")

    def _revision(self, owner_id: str, appointment_id: str) -> int | None:
        item = self.store.get_item(COLLECTION, owner_id, appointment_id)
        return int(item.get("revision") or 0) if item else None
