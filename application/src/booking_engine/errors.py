"""Booking engine errors. Every rejected attempt raises one of these with a stable code."""

from __future__ import annotations


class BookingError(Exception):
    """Base class for all caller-visible engine failures."""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "detail": self.message}


class InvalidTimeFormat(BookingError, ValueError):
    code = "invalid_time_format"
    status_code = 422


class InvalidBusinessHours(BookingError, ValueError):
    code = "invalid_business_hours"
    status_code = 422


class InvalidRequest(BookingError, ValueError):
    """Malformed input: unknown status, bad price or discount, missing client details."""
    code = "invalid_request"
    status_code = 422


class OutOfHoursError(BookingError):
    code = "out_of_hours"
    status_code = 409


class PastTimeError(BookingError):
    code = "past_time"
    status_code = 409


class ConflictError(BookingError):
    code = "conflict"
    status_code = 409


class LinkNotFound(BookingError):
    code = "link_not_found"
    status_code = 404


class LinkInactive(LinkNotFound):
    # Same 404 status as a missing link, distinct code.
    code = "link_inactive"


class ServiceNotEligible(BookingError):
    code = "service_not_eligible"
    status_code = 422


class LeadTimeExceeded(BookingError):
    code = "lead_time_exceeded"
    status_code = 422


class NotFoundError(BookingError):
    code = "not_found"
    status_code = 404


class OrphanedFinancialRecordWarning(UserWarning):
    """A completed appointment left 'completed' without a paired income record to remove."""
