from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from bson import ObjectId

from ..models import InsertManyResult


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive range over a ``YYYY-MM-DD HH:MM:SS`` string field."""

    start_date: str
    end_date: str
    field: str = "date_close_date"

    @property
    def lower(self) -> str:
        return f"{self.start_date} 00:00:00"

    @property
    def upper(self) -> str:
        return f"{self.end_date} 23:59:59"


class DocumentBackend(Protocol):
    name: str

    async def find(self, collection: str, date_range: DateRange | None, limit: int) -> list[dict]: ...

    async def upsert(self, collection: str, key_field: str, key: str, document: dict) -> None: ...

    async def insert_many(self, collection: str, documents: list[dict], id_field: str) -> InsertManyResult: ...

    async def insert_one(self, collection: str, document: dict, doc_id: str | None = None) -> str: ...

    async def update_one(self, collection: str, doc_id: str, update: dict) -> None: ...

    async def get(self, collection: str, doc_id: str) -> dict | None: ...

    async def set_batch(self, collection: str, documents: dict[str, dict]) -> None: ...


def flatten_update(update: dict, prefix: str = "") -> dict:
    """{"metadata": {"processed": True}} -> {"metadata.processed": True}

    Lists and datetimes are leaf values. Empty mappings are kept as leaves so
    they still overwrite the field.
    """
    result: dict = {}
    for key, value in update.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict) and value:
            result.update(flatten_update(value, path))
        else:
            result[path] = value
    return result


def to_firestore_document(document: dict) -> dict:
    """Drop the Mongo ``_id`` and turn ObjectIds into hex strings, recursively."""
    result: dict = {}
    for key, value in document.items():
        if key == "_id":
            continue
        result[key] = _convert_value(value)
    return result


def _convert_value(value: object) -> object:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return to_firestore_document(value)
    if isinstance(value, list):
        return [_convert_value(v) for v in value]
    return value


def new_document_id() -> str:
    return str(ObjectId())
