"""
The two front doors into the ledger.

BookingSession is the operator's form: any owner service, any day, backdating allowed.
PublicBookingSession is reached anonymously through a booking link: only the link's
services, only days inside its lead-time window, only future starts, and nothing
outside the link owner's data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable

from . import business_hours, catalog, clock, customers, links, slots
from .availability import is_future
from .errors import (
    InvalidRequest,
    LeadTimeExceeded,
    NotFoundError,
    PastTimeError,
    ServiceNotEligible,
)
from .ledger import AppointmentLedger
from .models import SOURCE_PUBLIC_LINK, Appointment, BookingLink, Client, Service

logger = logging.getLogger(__name__)


def _resolve_client(store, owner_id: str, full_name: str | None, phone: str | None, email: str | None) -> Client:
    if not (full_name or "").strip():
        raise InvalidRequest("Full name is required")
    try:
        return customers.find_or_create_by_phone(store, owner_id, full_name, phone or "", email)
    except ValueError as exc:
        raise InvalidRequest(str(exc)) from exc


class BookingSession:
    """Internal appointment form for a trusted operator of `owner_id`."""

    def __init__(self, store, owner_id: str, now: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self.owner_id = owner_id
        self.ledger = AppointmentLedger(store, now=now)

    def business_hours(self) -> business_hours.BusinessHoursConfig:
        return business_hours.get_config(self.store, self.owner_id)

    def available_slots(self, service_id: str, day: date, step: int | None = None) -> list[slots.TimeSlot]:
        service = catalog.get_by_id(self.store, self.owner_id, service_id)
        return slots.generate(
            self.owner_id,
            day,
            service.duration_minutes,
            self.business_hours(),
            self.ledger.appointments_for_day(self.owner_id, day),
            step,
        )

    def book(
        self,
        service_id: str,
        start: datetime,
        *,
        client_id: str | None = None,
        full_name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        notes: str | None = None,
        final_price: float | None = None,
        discount: float | None = None,
        duration_override: int | str | None = None,
    ) -> Appointment:
        """Book for an existing client id, or resolve/create the client by phone."""
        service = catalog.get_by_id(self.store, self.owner_id, service_id)
        if client_id:
            client = customers.get_client(self.store, self.owner_id, client_id)
        else:
            client = _resolve_client(self.store, self.owner_id, full_name, phone, email)
        return self.ledger.create(
            self.owner_id,
            client.id,
            service,
            start,
            notes=notes,
            final_price=final_price,
            discount=discount,
            duration_override=duration_override,
        )


@dataclass
class BookingResult:
    appointment: Appointment
    redirect_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        appt = self.appointment
        return {
            "appointment": {
                "id": appt.id,
                "service_id": appt.service_id,
                "scheduled_time": appt.to_dict()["scheduled_time"],
                "end_time": appt.to_dict()["end_time"],
                "status": appt.status,
            },
            "redirect_url": self.redirect_url,
        }


class PublicBookingSession:
    """Anonymous booking through the link addressed by `slug`."""

    def __init__(self, store, slug: str, now: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self.slug = slug
        self._now = now or datetime.now
        self.ledger = AppointmentLedger(store, now=self._now)
        self._viewed = False

    def link(self) -> BookingLink:
        """The active link, re-resolved on every call so a deactivated link stops working at once."""
        return links.get_active_by_slug(self.store, self.slug)

    def open(self) -> BookingLink:
        """Resolve the link and count one view per session."""
        link = self.link()
        if not self._viewed:
            links.increment_views(self.store, link)
            self._viewed = True
        return link

    def booking_window(self, link: BookingLink | None = None) -> tuple[date, date]:
        link = link or self.link()
        today = self._now().date()
        return today, today + timedelta(days=link.days_in_advance)

    def bookable_info(self) -> dict[str, Any]:
        """Everything the public page needs: link, eligible services, hours, window."""
        link = self.open()
        first, last = self.booking_window(link)
        config = business_hours.get_config(self.store, link.owner_id)
        hours = config.to_dict()
        hours.pop("owner_id", None)
        return {
            "link": {
                "slug": link.slug,
                "name": link.name,
                "description": link.description,
                "days_in_advance": link.days_in_advance,
            },
            "services": [
                {
                    "id": s.id,
                    "name": s.name,
                    "duration_minutes": s.duration_minutes,
                    "duration": clock.format_duration(s.duration_minutes),
                    "price": s.price,
                }
                for s in self.services(link)
            ],
            "business_hours": hours,
            "booking_window": {"first_day": first.isoformat(), "last_day": last.isoformat()},
        }

    def services(self, link: BookingLink | None = None) -> list[Service]:
        link = link or self.link()
        return catalog.list_services(self.store, link.owner_id, link.service_ids)

    def _eligible_service(self, link: BookingLink, service_id: str) -> Service:
        if service_id not in link.service_ids:
            raise ServiceNotEligible(f"Service {service_id} cannot be booked through this link")
        try:
            return catalog.get_by_id(self.store, link.owner_id, service_id)
        except NotFoundError as exc:
            raise ServiceNotEligible(f"Service {service_id} is no longer offered") from exc

    def _check_day(self, link: BookingLink, day: date) -> None:
        first, last = self.booking_window(link)
        if day < first:
            raise PastTimeError(f"{day.isoformat()} is in the past")
        if day > last:
            raise LeadTimeExceeded(f"Bookings open at most {link.days_in_advance} days ahead (until {last.isoformat()})")

    def available_slots(self, service_id: str, day: date, step: int | None = None) -> list[slots.TimeSlot]:
        link = self.link()
        service = self._eligible_service(link, service_id)
        self._check_day(link, day)
        return slots.generate(
            link.owner_id,
            day,
            service.duration_minutes,
            business_hours.get_config(self.store, link.owner_id),
            self.ledger.appointments_for_day(link.owner_id, day),
            step,
            require_future=True,
            now=self._now(),
        )

    def submit(
        self,
        full_name: str,
        phone: str,
        service_id: str,
        day: date | str,
        time: str,
        *,
        email: str | None = None,
        notes: str | None = None,
    ) -> BookingResult:
        """Book the chosen slot for a self-identified client; counts the booking on the link."""
        link = self.link()
        service = self._eligible_service(link, service_id)
        day = clock.parse_day(day) if isinstance(day, str) else day
        self._check_day(link, day)
        start = clock.combine(day, time)
        if not is_future(start, self._now()):
            raise PastTimeError(f"{start:%Y-%m-%d %H:%M} is in the past")

        client = _resolve_client(self.store, link.owner_id, full_name, phone, email)
        appointment = self.ledger.create(
            link.owner_id,
            client.id,
            service,
            start,
            notes=notes,
            final_price=service.price,
            source=SOURCE_PUBLIC_LINK,
            booking_link_id=link.id,
            require_future=True,
        )
        links.increment_appointments(self.store, link)
        logger.info("Public booking %s via link %s", appointment.id, link.slug)
        return BookingResult(appointment=appointment, redirect_url=link.redirect_url)
