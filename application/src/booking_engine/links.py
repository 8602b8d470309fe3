"""Booking link directory: slug-addressed public booking configurations."""

from __future__ import annotations

import logging
import re
import secrets
import unicodedata
import uuid
from typing import Any

from .errors import LinkInactive, LinkNotFound, NotFoundError
from .models import BookingLink

logger = logging.getLogger(__name__)

COLLECTION = "booking_links"
# Links are looked up by slug without knowing the owner, so they share one partition.
PARTITION = "public"
DEFAULT_DAYS_IN_ADVANCE = 30


def slugify(name: str) -> str:
    """Lowercase ASCII words joined by '-' (accents stripped)."""
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name.lower()).strip("-")
    return slug or "agenda"


def create_link(
    store,
    owner_id: str,
    name: str,
    service_ids: list[str],
    *,
    days_in_advance: int = DEFAULT_DAYS_IN_ADVANCE,
    description: str | None = None,
    redirect_url: str | None = None,
    active: bool = True,
) -> BookingLink:
    """Create a link whose slug is the name plus a random suffix."""
    if not name.strip():
        raise ValueError("name is required")
    if not service_ids:
        raise ValueError("Select at least one service")
    if int(days_in_advance) < 1:
        raise ValueError("days_in_advance must be at least 1")

    base = slugify(name)
    for _ in range(5):
        link = BookingLink(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            slug=f"{base}-{secrets.token_hex(3)}",
            name=name.strip(),
            description=description,
            active=active,
            service_ids=list(service_ids),
            days_in_advance=int(days_in_advance),
            redirect_url=redirect_url,
        )
        if store.put_item(COLLECTION, PARTITION, link.slug, link.to_dict(), if_absent=True):
            logger.info("Created booking link %s for owner %s", link.slug, owner_id)
            return link
    raise RuntimeError("Could not allocate a unique booking link slug")


def get_by_slug(store, slug: str) -> BookingLink:
    item = store.get_item(COLLECTION, PARTITION, slug)
    if item is None:
        raise LinkNotFound(f"Booking link {slug!r} not found")
    return BookingLink.from_item(item)


def get_active_by_slug(store, slug: str) -> BookingLink:
    link = get_by_slug(store, slug)
    if not link.active:
        raise LinkInactive(f"Booking link {slug!r} is not active")
    return link


def list_links(store, owner_id: str, only_active: bool = False) -> list[BookingLink]:
    equals: dict[str, Any] = {"owner_id": owner_id}
    if only_active:
        equals["active"] = True
    items = store.query_items(COLLECTION, PARTITION, equals=equals)
    return sorted((BookingLink.from_item(i) for i in items), key=lambda l: l.name.lower())


_EDITABLE = ("name", "description", "active", "service_ids", "days_in_advance", "redirect_url")


def update_link(store, owner_id: str, slug: str, **fields: Any) -> BookingLink:
    """Patch an owner's link. Counters and slug are not editable."""
    link = get_by_slug(store, slug)
    if link.owner_id != owner_id:
        raise NotFoundError(f"Booking link {slug!r} not found")
    unknown = set(fields) - set(_EDITABLE)
    if unknown:
        raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")
    if "days_in_advance" in fields and int(fields["days_in_advance"]) < 1:
        raise ValueError("days_in_advance must be at least 1")
    if "service_ids" in fields and fields["service_ids"] is not None and not fields["service_ids"]:
        raise ValueError("Select at least one service")
    patch = {k: v for k, v in fields.items() if v is not None}
    if not patch:
        return link
    updated = store.update_item(COLLECTION, PARTITION, slug, patch)
    if updated is None:
        raise LinkNotFound(f"Booking link {slug!r} not found")
    return BookingLink.from_item(updated)


def increment_views(store, link: BookingLink) -> None:
    if not store.increment(COLLECTION, PARTITION, link.slug, "view_count"):
        logger.warning("View not counted: booking link %s disappeared", link.slug)


def increment_appointments(store, link: BookingLink) -> None:
    if not store.increment(COLLECTION, PARTITION, link.slug, "appointment_count"):
        logger.warning("Appointment not counted: booking link %s disappeared", link.slug)
