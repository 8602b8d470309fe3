"""Customer directory: clients keyed by phone within an owner."""

from __future__ import annotations

import re

from .errors import NotFoundError
from .models import Client

COLLECTION = "customers"


def normalize_phone(phone: str) -> str:
    """Digits only, keeping a leading '+'. Raises ValueError when no digits remain."""
    raw = (phone or "").strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        raise ValueError(f"Invalid phone number: {phone!r}")
    return ("+" if raw.startswith("+") else "") + digits


def client_id_for(phone: str) -> str:
    return "tel-" + normalize_phone(phone).lstrip("+")


def find_or_create_by_phone(store, owner_id: str, full_name: str, phone: str, email: str | None = None) -> Client:
    """
    Return the owner's client with this phone, creating it if needed.

    Idempotent per (owner, phone): the client id is derived from the phone and the
    write is conditional, so concurrent calls converge on one record.
    """
    client = Client(
        id=client_id_for(phone),
        owner_id=owner_id,
        full_name=full_name.strip(),
        phone=normalize_phone(phone),
        email=(email or "").strip() or None,
    )
    if store.put_item(COLLECTION, owner_id, client.id, client.to_dict(), if_absent=True):
        return client
    return get_client(store, owner_id, client.id)


def get_client(store, owner_id: str, client_id: str) -> Client:
    item = store.get_item(COLLECTION, owner_id, client_id)
    if item is None:
        raise NotFoundError(f"Client {client_id} not found")
    return Client(
        id=item["id"],
        owner_id=item["owner_id"],
        full_name=item.get("full_name", ""),
        phone=item.get("phone", ""),
        email=item.get("email"),
    )
