"""
Document store: one DynamoDB table holding every collection, plus an in-process twin.

Items are addressed by (collection, partition, item_id). In DynamoDB that maps to
pk = "<collection>#<partition>" and sk = item_id. The partition is the owner id for
owner-scoped collections, so every query is confined to one owner.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Any, Iterable

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

PK = "pk"
SK = "sk"
VERSION = "version"

_SERIALIZER = TypeSerializer()
_DESERIALIZER = TypeDeserializer()


class StaleWrite(Exception):
    """A conditional commit lost to a concurrent write. Callers re-read and re-check."""


@dataclass
class Write:
    """One record write inside an atomic commit."""
    collection: str
    partition: str
    item_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    op: str = "put"  # put | update | delete
    # field -> expected current value; None means the attribute must be absent
    expect: dict[str, Any] | None = None


@dataclass
class VersionGuard:
    """Lock record whose version must still equal `expected`; bumped by the commit."""
    collection: str
    partition: str
    item_id: str
    expected: int


def _client():
    endpoint = os.environ.get("DYNAMODB_ENDPOINT_URL")
    region = os.environ.get("AWS_REGION", "us-west-2")
    kwargs = {"region_name": region}
    if endpoint:
        kwargs["endpoint_url"] = endpoint
    return boto3.client("dynamodb", config=Config(retries={"mode": "standard", "max_attempts": 3}), **kwargs)


def _table_name() -> str:
    return os.environ.get("DYNAMODB_TABLE_NAME", "booking_engine")


def _floats_to_decimal(value: Any) -> Any:
    """Recursively convert floats to Decimal so DynamoDB serializer accepts them."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _floats_to_decimal(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_floats_to_decimal(v) for v in value]
    return value


def _decimal_to_native(value: Any) -> Any:
    """Inverse of _floats_to_decimal: integral Decimals become int, the rest float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _decimal_to_native(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_decimal_to_native(v) for v in value]
    return value


def _to_ddb(value: Any) -> dict[str, Any]:
    """Serialize a Python value to DynamoDB attribute format (floats converted to Decimal)."""
    return _SERIALIZER.serialize(_floats_to_decimal(value))


def _from_ddb(attr: dict[str, Any]) -> Any:
    """Deserialize a DynamoDB attribute value to Python."""
    return _decimal_to_native(_DESERIALIZER.deserialize(attr))


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class DynamoStore:
    """Collections over a single DynamoDB table using the low-level client."""

    def __init__(self, client=None, table_name: str | None = None) -> None:
        self._client = client
        self.table_name = table_name or _table_name()

    @property
    def client(self):
        if self._client is None:
            self._client = _client()
        return self._client

    @staticmethod
    def _key(collection: str, partition: str, item_id: str) -> dict[str, dict[str, str]]:
        return {PK: {"S": f"{collection}#{partition}"}, SK: {"S": item_id}}

    @staticmethod
    def _decode(item: dict[str, Any]) -> dict[str, Any]:
        return {k: _from_ddb(v) for k, v in item.items() if k not in (PK, SK)}

    def get_item(self, collection: str, partition: str, item_id: str) -> dict[str, Any] | None:
        resp = self.client.get_item(
            TableName=self.table_name,
            Key=self._key(collection, partition, item_id),
            ConsistentRead=True,
        )
        item = resp.get("Item")
        return self._decode(item) if item else None

    def put_item(
        self, collection: str, partition: str, item_id: str, item: dict[str, Any], *, if_absent: bool = False
    ) -> bool:
        """Write a whole record. With if_absent, returns False instead of overwriting."""
        attrs = {k: _to_ddb(v) for k, v in item.items()}
        attrs.update(self._key(collection, partition, item_id))
        kwargs: dict[str, Any] = {"TableName": self.table_name, "Item": attrs}
        if if_absent:
            kwargs["ConditionExpression"] = "attribute_not_exists(#pk)"
            kwargs["ExpressionAttributeNames"] = {"#pk": PK}
        try:
            self.client.put_item(**kwargs)
        except ClientError as exc:
            if if_absent and _error_code(exc) == "ConditionalCheckFailedException":
                return False
            raise
        return True

    def update_item(
        self, collection: str, partition: str, item_id: str, fields: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Patch fields on an existing record. Returns the new record, or None if it does not exist."""
        expr, names, values = self._set_expression(fields)
        names["#pk"] = PK
        try:
            resp = self.client.update_item(
                TableName=self.table_name,
                Key=self._key(collection, partition, item_id),
                UpdateExpression=expr,
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                return None
            raise
        return self._decode(resp.get("Attributes") or {})

    def delete_item(self, collection: str, partition: str, item_id: str) -> bool:
        resp = self.client.delete_item(
            TableName=self.table_name,
            Key=self._key(collection, partition, item_id),
            ReturnValues="ALL_OLD",
        )
        return bool(resp.get("Attributes"))

    def query_items(
        self,
        collection: str,
        partition: str,
        *,
        equals: dict[str, Any] | None = None,
        between: tuple[str, Any, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        All records of one partition, optionally filtered.

        equals: field -> value (a list/tuple/set value means "any of").
        between: (field, low, high) with low <= value < high.
        """
        names: dict[str, str] = {"#pk": PK}
        values: dict[str, Any] = {":pk": {"S": f"{collection}#{partition}"}}
        filters: list[str] = []
        for i, (name, value) in enumerate((equals or {}).items()):
            names[f"#f{i}"] = name
            if isinstance(value, (list, tuple, set)):
                placeholders = []
                for j, option in enumerate(value):
                    values[f":f{i}_{j}"] = _to_ddb(option)
                    placeholders.append(f":f{i}_{j}")
                filters.append(f"#f{i} IN ({', '.join(placeholders)})")
            else:
                values[f":f{i}"] = _to_ddb(value)
                filters.append(f"#f{i} = :f{i}")
        if between is not None:
            name, low, high = between
            names["#r"] = name
            values[":lo"] = _to_ddb(low)
            values[":hi"] = _to_ddb(high)
            filters.append("#r >= :lo AND #r < :hi")

        kwargs: dict[str, Any] = {
            "TableName": self.table_name,
            "KeyConditionExpression": "#pk = :pk",
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
            "ConsistentRead": True,
        }
        if filters:
            kwargs["FilterExpression"] = " AND ".join(filters)

        out: list[dict[str, Any]] = []
        while True:
            resp = self.client.query(**kwargs)
            out.extend(self._decode(item) for item in resp.get("Items") or [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return out
            kwargs["ExclusiveStartKey"] = last_key

    def increment(self, collection: str, partition: str, item_id: str, field_name: str, amount: int = 1) -> bool:
        """Atomic counter bump on an existing record."""
        try:
            self.client.update_item(
                TableName=self.table_name,
                Key=self._key(collection, partition, item_id),
                UpdateExpression="ADD #c :n",
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames={"#c": field_name, "#pk": PK},
                ExpressionAttributeValues={":n": {"N": str(amount)}},
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                return False
            raise
        return True

    def get_version(self, collection: str, partition: str, item_id: str) -> int:
        item = self.get_item(collection, partition, item_id)
        return int((item or {}).get(VERSION, 0))

    def transact(self, writes: Iterable[Write], guards: Iterable[VersionGuard] = ()) -> None:
        """Apply all writes and guard bumps atomically, or raise StaleWrite."""
        items: list[dict[str, Any]] = []
        for w in writes:
            items.append(self._transact_item(w))
        for g in guards:
            names = {"#v": VERSION}
            values = {":next": {"N": str(g.expected + 1)}}
            if g.expected == 0:
                condition = "attribute_not_exists(#v)"
            else:
                condition = "#v = :expected"
                values[":expected"] = {"N": str(g.expected)}
            items.append({
                "Update": {
                    "TableName": self.table_name,
                    "Key": self._key(g.collection, g.partition, g.item_id),
                    "UpdateExpression": "SET #v = :next",
                    "ConditionExpression": condition,
                    "ExpressionAttributeNames": names,
                    "ExpressionAttributeValues": values,
                }
            })
        if not items:
            return
        try:
            self.client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            if _error_code(exc) in ("TransactionCanceledException", "ConditionalCheckFailedException"):
                raise StaleWrite(str(exc)) from exc
            raise

    def _transact_item(self, w: Write) -> dict[str, Any]:
        key = self._key(w.collection, w.partition, w.item_id)
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        conditions: list[str] = []
        for i, (name, expected) in enumerate((w.expect or {}).items()):
            names[f"#e{i}"] = name
            if expected is None:
                conditions.append(f"attribute_not_exists(#e{i})")
            else:
                values[f":e{i}"] = _to_ddb(expected)
                conditions.append(f"#e{i} = :e{i}")

        if w.op == "put":
            attrs = {k: _to_ddb(v) for k, v in w.fields.items()}
            attrs.update(key)
            body: dict[str, Any] = {"TableName": self.table_name, "Item": attrs}
            kind = "Put"
        elif w.op == "update":
            expr, set_names, set_values = self._set_expression(w.fields)
            names.update(set_names)
            values.update(set_values)
            names["#pk"] = PK
            conditions.insert(0, "attribute_exists(#pk)")
            body = {"TableName": self.table_name, "Key": key, "UpdateExpression": expr}
            kind = "Update"
        elif w.op == "delete":
            body = {"TableName": self.table_name, "Key": key}
            kind = "Delete"
        else:
            raise ValueError(f"Unknown write op: {w.op}")

        if conditions:
            body["ConditionExpression"] = " AND ".join(conditions)
        if names:
            body["ExpressionAttributeNames"] = names
        if values:
            body["ExpressionAttributeValues"] = values
        return {kind: body}

    @staticmethod
    def _set_expression(fields: dict[str, Any]) -> tuple[str, dict[str, str], dict[str, Any]]:
        """
        Build "SET a = :a, ..." / "REMOVE b" from a patch. None values remove the attribute.

        Uses ExpressionAttributeNames for every field since many (status, source, ...)
        are DynamoDB reserved words.
        """
        set_parts: list[str] = []
        remove_parts: list[str] = []
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        for i, (name, value) in enumerate(fields.items()):
            names[f"#u{i}"] = name
            if value is None:
                remove_parts.append(f"#u{i}")
            else:
                values[f":u{i}"] = _to_ddb(value)
                set_parts.append(f"#u{i} = :u{i}")
        expr = ""
        if set_parts:
            expr = "SET " + ", ".join(set_parts)
        if remove_parts:
            expr = (expr + " " if expr else "") + "REMOVE " + ", ".join(remove_parts)
        return expr, names, values


class MemoryStore:
    """
    Process-local store with the same conditional semantics as DynamoStore.

    Used for local runs (STORE_BACKEND=memory) and tests. One lock serializes
    every operation, which makes transact() atomic.
    """

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], dict[str, dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _bucket(self, collection: str, partition: str) -> dict[str, dict[str, Any]]:
        return self._data.setdefault((collection, partition), {})

    def get_item(self, collection: str, partition: str, item_id: str) -> dict[str, Any] | None:
        with self._lock:
            item = self._bucket(collection, partition).get(item_id)
            return copy.deepcopy(item) if item is not None else None

    def put_item(
        self, collection: str, partition: str, item_id: str, item: dict[str, Any], *, if_absent: bool = False
    ) -> bool:
        with self._lock:
            bucket = self._bucket(collection, partition)
            if if_absent and item_id in bucket:
                return False
            bucket[item_id] = copy.deepcopy(item)
            return True

    def update_item(
        self, collection: str, partition: str, item_id: str, fields: dict[str, Any]
    ) -> dict[str, Any] | None:
        with self._lock:
            bucket = self._bucket(collection, partition)
            if item_id not in bucket:
                return None
            self._apply(bucket[item_id], fields)
            return copy.deepcopy(bucket[item_id])

    def delete_item(self, collection: str, partition: str, item_id: str) -> bool:
        with self._lock:
            return self._bucket(collection, partition).pop(item_id, None) is not None

    def query_items(
        self,
        collection: str,
        partition: str,
        *,
        equals: dict[str, Any] | None = None,
        between: tuple[str, Any, Any] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            items = list(self._bucket(collection, partition).values())
        out = []
        for item in items:
            if not self._matches(item, equals or {}, between):
                continue
            out.append(copy.deepcopy(item))
        return out

    def increment(self, collection: str, partition: str, item_id: str, field_name: str, amount: int = 1) -> bool:
        with self._lock:
            item = self._bucket(collection, partition).get(item_id)
            if item is None:
                return False
            item[field_name] = int(item.get(field_name) or 0) + amount
            return True

    def get_version(self, collection: str, partition: str, item_id: str) -> int:
        item = self.get_item(collection, partition, item_id)
        return int((item or {}).get(VERSION, 0))

    def transact(self, writes: Iterable[Write], guards: Iterable[VersionGuard] = ()) -> None:
        writes = list(writes)
        guards = list(guards)
        with self._lock:
            for g in guards:
                current = int((self._bucket(g.collection, g.partition).get(g.item_id) or {}).get(VERSION, 0))
                if current != g.expected:
                    raise StaleWrite(f"{g.collection}/{g.partition}/{g.item_id} at version {current}, expected {g.expected}")
            for w in writes:
                existing = self._bucket(w.collection, w.partition).get(w.item_id)
                if w.op in ("update",) and existing is None:
                    raise StaleWrite(f"{w.collection}/{w.item_id} does not exist")
                for name, expected in (w.expect or {}).items():
                    actual = (existing or {}).get(name)
                    if actual != expected:
                        raise StaleWrite(f"{w.collection}/{w.item_id}: {name} is {actual!r}, expected {expected!r}")
            for w in writes:
                bucket = self._bucket(w.collection, w.partition)
                if w.op == "put":
                    bucket[w.item_id] = copy.deepcopy(w.fields)
                elif w.op == "update":
                    self._apply(bucket[w.item_id], w.fields)
                elif w.op == "delete":
                    bucket.pop(w.item_id, None)
                else:
                    raise ValueError(f"Unknown write op: {w.op}")
            for g in guards:
                bucket = self._bucket(g.collection, g.partition)
                bucket.setdefault(g.item_id, {})[VERSION] = g.expected + 1

    @staticmethod
    def _apply(item: dict[str, Any], fields: dict[str, Any]) -> None:
        for name, value in fields.items():
            if value is None:
                item.pop(name, None)
            else:
                item[name] = copy.deepcopy(value)

    @staticmethod
    def _matches(item: dict[str, Any], equals: dict[str, Any], between: tuple[str, Any, Any] | None) -> bool:
        for name, value in equals.items():
            if isinstance(value, (list, tuple, set)):
                if item.get(name) not in value:
                    return False
            elif item.get(name) != value:
                return False
        if between is not None:
            name, low, high = between
            actual = item.get(name)
            if actual is None or not (low <= actual < high):
                return False
        return True


def _backend() -> str:
    return os.environ.get("STORE_BACKEND", "dynamodb").strip().lower()


@lru_cache(maxsize=1)
def default_store() -> DynamoStore | MemoryStore:
    """Process-wide store chosen by STORE_BACKEND (dynamodb | memory)."""
    backend = _backend()
    if backend == "memory":
        logger.info("Using in-memory store")
        return MemoryStore()
    if backend != "dynamodb":
        raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")
    logger.info("Using DynamoDB table %s", _table_name())
    return DynamoStore()
