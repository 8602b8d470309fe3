"""Record types shared across the engine. Times are naive local datetimes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

SCHEDULED = "scheduled"
COMPLETED = "completed"
CANCELED = "canceled"
NO_SHOW = "no_show"

STATUSES = (SCHEDULED, COMPLETED, CANCELED, NO_SHOW)
# Statuses whose interval occupies the calendar
BLOCKING_STATUSES = frozenset({SCHEDULED, COMPLETED})

SOURCE_INTERNAL = "internal"
SOURCE_PUBLIC_LINK = "public_link"


def _iso(moment: datetime) -> str:
    return moment.replace(microsecond=0).isoformat()


@dataclass
class Service:
    """Catalog entry. Duration is always whole minutes inside the engine."""
    id: str
    owner_id: str
    name: str
    duration_minutes: int
    price: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "duration_minutes": self.duration_minutes,
            "price": self.price,
        }


@dataclass
class Client:
    id: str
    owner_id: str
    full_name: str
    phone: str
    email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "full_name": self.full_name,
            "phone": self.phone,
            "email": self.email,
        }


@dataclass
class Appointment:
    id: str
    owner_id: str
    client_id: str
    service_id: str
    scheduled_time: datetime
    duration_minutes: int  # nominal service duration captured at booking
    status: str = SCHEDULED
    final_price: float = 0.0
    discount: float | None = None  # fraction 0-1
    notes: str | None = None
    duration_override: int | None = None
    source: str = SOURCE_INTERNAL
    booking_link_id: str | None = None
    financial_record_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    revision: int = 0  # bumped on every write; guards concurrent edits

    @property
    def effective_duration(self) -> int:
        return self.duration_override or self.duration_minutes

    @property
    def end_time(self) -> datetime:
        return self.scheduled_time + timedelta(minutes=self.effective_duration)

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_STATUSES

    def income_amount(self) -> float:
        """Amount recorded as income on completion: final price less the discount fraction."""
        amount = float(self.final_price or 0)
        if self.discount:
            amount = amount * (1 - float(self.discount))
        return round(amount, 2)

    def to_item(self) -> dict[str, Any]:
        """Storage form; None-valued optionals are left out."""
        item: dict[str, Any] = {
            "id": self.id,
            "owner_id": self.owner_id,
            "client_id": self.client_id,
            "service_id": self.service_id,
            "scheduled_time": _iso(self.scheduled_time),
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "final_price": self.final_price,
            "source": self.source,
            "revision": self.revision,
        }
        optional = {
            "discount": self.discount,
            "notes": self.notes,
            "duration_override": self.duration_override,
            "booking_link_id": self.booking_link_id,
            "financial_record_id": self.financial_record_id,
            "created_at": _iso(self.created_at) if self.created_at else None,
            "updated_at": _iso(self.updated_at) if self.updated_at else None,
        }
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    def to_dict(self) -> dict[str, Any]:
        """API form: storage fields plus derived end time and effective duration."""
        out = self.to_item()
        out["end_time"] = _iso(self.end_time)
        out["effective_duration"] = self.effective_duration
        return out

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "Appointment":
        def _dt(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return cls(
            id=item["id"],
            owner_id=item["owner_id"],
            client_id=item["client_id"],
            service_id=item["service_id"],
            scheduled_time=datetime.fromisoformat(item["scheduled_time"]),
            duration_minutes=int(item["duration_minutes"]),
            status=item.get("status", SCHEDULED),
            final_price=float(item.get("final_price") or 0),
            discount=float(item["discount"]) if item.get("discount") is not None else None,
            notes=item.get("notes"),
            duration_override=int(item["duration_override"]) if item.get("duration_override") else None,
            source=item.get("source", SOURCE_INTERNAL),
            booking_link_id=item.get("booking_link_id"),
            financial_record_id=item.get("financial_record_id"),
            created_at=_dt(item.get("created_at")),
            updated_at=_dt(item.get("updated_at")),
            revision=int(item.get("revision") or 0),
        )


@dataclass
class BookingLink:
    """Shareable public booking configuration, addressed by slug."""
    id: str
    owner_id: str
    slug: str
    name: str
    service_ids: list[str] = field(default_factory=list)
    days_in_advance: int = 30
    active: bool = True
    description: str | None = None
    redirect_url: str | None = None
    view_count: int = 0
    appointment_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "active": self.active,
            "service_ids": list(self.service_ids),
            "days_in_advance": self.days_in_advance,
            "redirect_url": self.redirect_url,
            "view_count": self.view_count,
            "appointment_count": self.appointment_count,
        }

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "BookingLink":
        return cls(
            id=item["id"],
            owner_id=item["owner_id"],
            slug=item["slug"],
            name=item.get("name", ""),
            description=item.get("description"),
            active=bool(item.get("active", False)),
            service_ids=list(item.get("service_ids") or []),
            days_in_advance=int(item.get("days_in_advance", 30)),
            redirect_url=item.get("redirect_url"),
            view_count=int(item.get("view_count") or 0),
            appointment_count=int(item.get("appointment_count") or 0),
        )


@dataclass
class FinancialRecord:
    id: str
    owner_id: str
    amount: float
    appointment_id: str | None
    memo: str
    type: str = "income"
    category: str = "appointment"
    client_id: str | None = None
    transaction_date: str | None = None
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "type": self.type,
            "category": self.category,
            "amount": self.amount,
            "appointment_id": self.appointment_id,
            "client_id": self.client_id,
            "memo": self.memo,
            "transaction_date": self.transaction_date,
            "created_at": self.created_at,
        }

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "FinancialRecord":
        return cls(
            id=item["id"],
            owner_id=item["owner_id"],
            type=item.get("type", "income"),
            category=item.get("category", "appointment"),
            amount=float(item.get("amount") or 0),
            appointment_id=item.get("appointment_id"),
            client_id=item.get("client_id"),
            memo=item.get("memo", ""),
            transaction_date=item.get("transaction_date"),
            created_at=item.get("created_at"),
        )
