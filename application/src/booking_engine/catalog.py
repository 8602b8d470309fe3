"""Service catalog: duration and price by service id, scoped to one owner."""

from __future__ import annotations

import uuid

from . import clock
from .errors import NotFoundError
from .models import Service

COLLECTION = "services"


def add_service(
    store, owner_id: str, name: str, duration: int | str, price: float, service_id: str | None = None
) -> Service:
    """Register a service. Duration may be minutes or "HH:mm[:ss]"; it is stored as minutes."""
    service = Service(
        id=service_id or uuid.uuid4().hex,
        owner_id=owner_id,
        name=name,
        duration_minutes=clock.parse_duration(duration),
        price=float(price),
    )
    store.put_item(COLLECTION, owner_id, service.id, service.to_dict())
    return service


def _from_item(item: dict) -> Service:
    return Service(
        id=item["id"],
        owner_id=item["owner_id"],
        name=item.get("name", ""),
        duration_minutes=clock.parse_duration(item["duration_minutes"]),
        price=float(item.get("price") or 0),
    )


def get_by_id(store, owner_id: str, service_id: str) -> Service:
    item = store.get_item(COLLECTION, owner_id, service_id)
    if item is None:
        raise NotFoundError(f"Service {service_id} not found")
    return _from_item(item)


def list_services(store, owner_id: str, service_ids: list[str] | None = None) -> list[Service]:
    """All of an owner's services, or just the given ids, ordered by name."""
    if service_ids is not None and not service_ids:
        return []
    equals = {"id": list(service_ids)} if service_ids else None
    items = store.query_items(COLLECTION, owner_id, equals=equals)
    return sorted((_from_item(i) for i in items), key=lambda s: s.name.lower())
