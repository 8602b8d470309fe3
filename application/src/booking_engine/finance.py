"""Financial ledger: append-only income records, optionally linked to an appointment."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from .errors import NotFoundError
from .models import FinancialRecord

logger = logging.getLogger(__name__)

COLLECTION = "transactions"


def append_income(
    store,
    owner_id: str,
    amount: float,
    linked_appointment_id: str | None,
    memo: str,
    *,
    client_id: str | None = None,
    transaction_date: datetime | None = None,
    record_id: str | None = None,
) -> str:
    """
    Write one income record and return its id.

    With an explicit record_id the write happens only if no record has that id yet;
    an existing record is kept as is and its id returned.
    """
    now = datetime.now().replace(microsecond=0)
    record = FinancialRecord(
        id=record_id or uuid.uuid4().hex,
        owner_id=owner_id,
        amount=round(float(amount), 2),
        appointment_id=linked_appointment_id,
        client_id=client_id,
        memo=memo,
        transaction_date=(transaction_date or now).date().isoformat(),
        created_at=now.isoformat(),
    )
    if not store.put_item(COLLECTION, owner_id, record.id, record.to_dict(), if_absent=record_id is not None):
        logger.info("Income record %s already exists for owner %s", record.id, owner_id)
        return record.id
    logger.info("Income %.2f recorded for owner %s (appointment %s)", record.amount, owner_id, linked_appointment_id)
    return record.id


def get_record(store, owner_id: str, record_id: str) -> FinancialRecord | None:
    item = store.get_item(COLLECTION, owner_id, record_id)
    return FinancialRecord.from_item(item) if item else None


def find_by_linked_appointment_id(store, owner_id: str, appointment_id: str) -> list[FinancialRecord]:
    items = store.query_items(COLLECTION, owner_id, equals={"appointment_id": appointment_id})
    return [FinancialRecord.from_item(i) for i in items]


def delete_record(store, owner_id: str, record_id: str) -> bool:
    return store.delete_item(COLLECTION, owner_id, record_id)


def delete_by_linked_appointment_id(store, owner_id: str, appointment_id: str) -> int:
    """Delete every record linked to the appointment. Raises NotFoundError if there were none."""
    records = find_by_linked_appointment_id(store, owner_id, appointment_id)
    deleted = sum(1 for r in records if delete_record(store, owner_id, r.id))
    if not deleted:
        raise NotFoundError(f"No financial record linked to appointment {appointment_id}")
    return deleted
