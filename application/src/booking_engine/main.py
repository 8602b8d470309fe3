"""FastAPI app: owner-side scheduling routes and the public booking-link routes."""

from __future__ import annotations

import logging
import os
import warnings
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv

# Load .env when running locally (application/.env or repo root .env / .env.local)
_app_dir = Path(__file__).resolve().parent.parent.parent  # application/
_repo_root = _app_dir.parent
load_dotenv(_app_dir / ".env")
load_dotenv(_app_dir / ".env.local")
load_dotenv(_repo_root / ".env")
load_dotenv(_repo_root / ".env.local")

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictInt

from . import business_hours, links, store
from .booking import BookingSession, PublicBookingSession
from .errors import BookingError, OrphanedFinancialRecordWarning
from .ledger import AppointmentLedger

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Appointment Booking Engine", version="0.1.0")


def get_store():
    return store.default_store()


def get_clock() -> Callable[[], datetime]:
    return datetime.now


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ── Request bodies ───────────────────────────────────────────────────────


class LunchBreakBody(BaseModel):
    start: str
    end: str


class BusinessHoursUpdate(BaseModel):
    start_time: str | None = None
    end_time: str | None = None
    days_off: list[StrictInt] | None = None
    lunch_break: LunchBreakBody | None = None


class AppointmentCreate(BaseModel):
    service_id: str
    scheduled_time: datetime
    client_id: str | None = None
    full_name: str | None = None
    phone: str | None = None
    email: str | None = None
    notes: str | None = None
    final_price: float | None = None
    discount: float | None = Field(default=None, ge=0, le=1)
    duration_override: int | str | None = None


class AppointmentPatch(BaseModel):
    scheduled_time: datetime | None = None
    duration_override: int | str | None = None
    service_id: str | None = None
    client_id: str | None = None
    final_price: float | None = None
    discount: float | None = Field(default=None, ge=0, le=1)
    notes: str | None = None
    status: str | None = None


class StatusChange(BaseModel):
    status: str
    duration_override: int | str | None = None


class BookingLinkCreate(BaseModel):
    name: str
    service_ids: list[str]
    days_in_advance: int = Field(default=links.DEFAULT_DAYS_IN_ADVANCE, ge=1)
    description: str | None = None
    redirect_url: str | None = None
    active: bool = True


class BookingLinkPatch(BaseModel):
    name: str | None = None
    description: str | None = None
    active: bool | None = None
    service_ids: list[str] | None = None
    days_in_advance: int | None = Field(default=None, ge=1)
    redirect_url: str | None = None


class PublicBooking(BaseModel):
    full_name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: str | None = None
    service_id: str
    day: date = Field(alias="date")
    time: str
    notes: str | None = None


# ── Owner routes ─────────────────────────────────────────────────────────


@app.get("/api/owners/{owner_id}/business-hours")
def get_business_hours(owner_id: str, db=Depends(get_store)) -> dict[str, Any]:
    return business_hours.get_config(db, owner_id).to_dict()


@app.put("/api/owners/{owner_id}/business-hours")
def put_business_hours(owner_id: str, body: BusinessHoursUpdate, db=Depends(get_store)) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "start_time": body.start_time,
        "end_time": body.end_time,
        "days_off": body.days_off,
    }
    # An explicit null clears the lunch break; leaving the key out keeps it.
    if "lunch_break" in body.model_fields_set:
        kwargs["lunch_break"] = body.lunch_break.model_dump() if body.lunch_break else None
    return business_hours.update_config(db, owner_id, **kwargs).to_dict()


@app.get("/api/owners/{owner_id}/slots")
def owner_slots(
    owner_id: str,
    service_id: str,
    day: date = Query(..., alias="date"),
    db=Depends(get_store),
    now=Depends(get_clock),
) -> dict[str, Any]:
    session = BookingSession(db, owner_id, now=now)
    return {
        "date": day.isoformat(),
        "slots": [s.to_dict() for s in session.available_slots(service_id, day)],
    }


@app.get("/api/owners/{owner_id}/appointments")
def list_appointments(
    owner_id: str,
    start: date,
    end: date,
    status: str | None = None,
    search: str | None = None,
    client_id: str | None = None,
    service_id: str | None = None,
    db=Depends(get_store),
) -> dict[str, Any]:
    """Appointments from `start` through `end` (both days inclusive)."""
    ledger = AppointmentLedger(db)
    appointments = ledger.list_for_owner(
        owner_id,
        datetime.combine(start, datetime.min.time()),
        datetime.combine(end + timedelta(days=1), datetime.min.time()),
        status=status,
        search=search,
        client_id=client_id,
        service_id=service_id,
    )
    return {"appointments": [a.to_dict() for a in appointments]}


@app.post("/api/owners/{owner_id}/appointments", status_code=201)
def create_appointment(
    owner_id: str, body: AppointmentCreate, db=Depends(get_store), now=Depends(get_clock)
) -> dict[str, Any]:
    session = BookingSession(db, owner_id, now=now)
    appointment = session.book(
        body.service_id,
        body.scheduled_time,
        client_id=body.client_id,
        full_name=body.full_name,
        phone=body.phone,
        email=body.email,
        notes=body.notes,
        final_price=body.final_price,
        discount=body.discount,
        duration_override=body.duration_override,
    )
    return appointment.to_dict()


@app.get("/api/owners/{owner_id}/appointments/{appointment_id}")
def get_appointment(owner_id: str, appointment_id: str, db=Depends(get_store)) -> dict[str, Any]:
    return AppointmentLedger(db).get(owner_id, appointment_id).to_dict()


def _with_warnings(call: Callable[[], Any]) -> tuple[Any, list[str]]:
    """Run call() and collect the recoverable warnings it raised."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", OrphanedFinancialRecordWarning)
        result = call()
    return result, [str(w.message) for w in caught if issubclass(w.category, OrphanedFinancialRecordWarning)]


@app.patch("/api/owners/{owner_id}/appointments/{appointment_id}")
def patch_appointment(
    owner_id: str, appointment_id: str, body: AppointmentPatch, db=Depends(get_store), now=Depends(get_clock)
) -> dict[str, Any]:
    ledger = AppointmentLedger(db, now=now)
    patch = body.model_dump(exclude_unset=True)
    appointment, notes = _with_warnings(lambda: ledger.update(owner_id, appointment_id, patch))
    return {**appointment.to_dict(), "warnings": notes}


@app.post("/api/owners/{owner_id}/appointments/{appointment_id}/status")
def change_status(
    owner_id: str, appointment_id: str, body: StatusChange, db=Depends(get_store), now=Depends(get_clock)
) -> dict[str, Any]:
    ledger = AppointmentLedger(db, now=now)
    appointment, notes = _with_warnings(
        lambda: ledger.set_status(owner_id, appointment_id, body.status, duration_override=body.duration_override)
    )
    return {**appointment.to_dict(), "warnings": notes}


@app.delete("/api/owners/{owner_id}/appointments/{appointment_id}", status_code=204)
def delete_appointment(owner_id: str, appointment_id: str, db=Depends(get_store)) -> Response:
    AppointmentLedger(db).delete(owner_id, appointment_id)
    return Response(status_code=204)


@app.get("/api/owners/{owner_id}/booking-links")
def list_booking_links(owner_id: str, db=Depends(get_store)) -> dict[str, Any]:
    return {"links": [l.to_dict() for l in links.list_links(db, owner_id)]}


@app.post("/api/owners/{owner_id}/booking-links", status_code=201)
def create_booking_link(owner_id: str, body: BookingLinkCreate, db=Depends(get_store)) -> Any:
    try:
        link = links.create_link(db, owner_id, body.name, body.service_ids, **body.model_dump(
            exclude={"name", "service_ids"}
        ))
    except ValueError as exc:
        return JSONResponse(status_code=422, content={"error": "invalid_request", "detail": str(exc)})
    return link.to_dict()


@app.patch("/api/owners/{owner_id}/booking-links/{slug}")
def patch_booking_link(owner_id: str, slug: str, body: BookingLinkPatch, db=Depends(get_store)) -> Any:
    try:
        link = links.update_link(db, owner_id, slug, **body.model_dump(exclude_unset=True))
    except ValueError as exc:
        return JSONResponse(status_code=422, content={"error": "invalid_request", "detail": str(exc)})
    return link.to_dict()


# ── Public routes (no authentication) ────────────────────────────────────


@app.get("/api/public/links/{slug}")
def public_link_info(slug: str, db=Depends(get_store), now=Depends(get_clock)) -> dict[str, Any]:
    return PublicBookingSession(db, slug, now=now).bookable_info()


@app.get("/api/public/links/{slug}/slots")
def public_slots(
    slug: str,
    service_id: str,
    day: date = Query(..., alias="date"),
    db=Depends(get_store),
    now=Depends(get_clock),
) -> dict[str, Any]:
    session = PublicBookingSession(db, slug, now=now)
    return {
        "date": day.isoformat(),
        "slots": [s.to_dict() for s in session.available_slots(service_id, day)],
    }


@app.post("/api/public/links/{slug}/bookings", status_code=201)
def public_booking(
    slug: str, body: PublicBooking, db=Depends(get_store), now=Depends(get_clock)
) -> dict[str, Any]:
    session = PublicBookingSession(db, slug, now=now)
    result = session.submit(
        body.full_name,
        body.phone,
        body.service_id,
        body.day,
        body.time,
        email=body.email,
        notes=body.notes,
    )
    return result.to_dict()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
