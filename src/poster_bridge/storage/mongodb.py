from __future__ import annotations

from bson import ObjectId
from pymongo import AsyncMongoClient, ReplaceOne
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import BulkWriteError

from ..models import InsertManyResult
from .backends import DateRange, flatten_update


DUPLICATE_KEY_ERROR = 11000


def _document_filter(doc_id: str) -> dict:
    return {"_id": ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id}


def _public(document: dict) -> dict:
    if "_id" in document:
        document = {**document, "_id": str(document["_id"])}
    return document


class MongoBackend:
    name = "mongodb"

    def __init__(self, db: AsyncDatabase) -> None:
        self.db = db
        self._indexed: set[tuple[str, str]] = set()

    @classmethod
    def connect(cls, uri: str, database: str) -> "MongoBackend":
        client = AsyncMongoClient(uri)
        return cls(client[database])

    async def _ensure_unique_index(self, collection: str, field: str) -> None:
        if (collection, field) in self._indexed:
            return
        await self.db[collection].create_index(field, unique=True)
        self._indexed.add((collection, field))

    async def find(self, collection: str, date_range: DateRange | None, limit: int) -> list[dict]:
        query: dict = {}
        if date_range is not None:
            query[date_range.field] = {"$gte": date_range.lower, "$lte": date_range.upper}
        cursor = self.db[collection].find(query).limit(limit)
        return [_public(doc) for doc in await cursor.to_list()]

    async def upsert(self, collection: str, key_field: str, key: str, document: dict) -> None:
        document = {k: v for k, v in document.items() if k != "_id"}
        await self.db[collection].update_one({key_field: key}, {"$set": document}, upsert=True)

    async def insert_many(self, collection: str, documents: list[dict], id_field: str) -> InsertManyResult:
        if not documents:
            return InsertManyResult()
        await self._ensure_unique_index(collection, id_field)

        # insert_many adds _id to the dicts it is given
        batch = [dict(doc) for doc in documents]
        try:
            result = await self.db[collection].insert_many(batch, ordered=False)
        except BulkWriteError as exc:
            write_errors = exc.details.get("writeErrors") or []
            unexpected = [e for e in write_errors if e.get("code") != DUPLICATE_KEY_ERROR]
            if unexpected or not write_errors:
                raise
            return InsertManyResult(
                inserted_count=int(exc.details.get("nInserted") or 0),
                duplicate_count=len(write_errors),
            )
        return InsertManyResult(inserted_count=len(result.inserted_ids))

    async def insert_one(self, collection: str, document: dict, doc_id: str | None = None) -> str:
        document = dict(document)
        if doc_id is not None:
            document["_id"] = ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id
        result = await self.db[collection].insert_one(document)
        return str(result.inserted_id)

    async def update_one(self, collection: str, doc_id: str, update: dict) -> None:
        # Dotted keys so that only the named nested fields change.
        await self.db[collection].update_one(_document_filter(doc_id), {"$set": flatten_update(update)})

    async def get(self, collection: str, doc_id: str) -> dict | None:
        document = await self.db[collection].find_one({"_id": doc_id})
        if document is None:
            return None
        document.pop("_id", None)
        return document

    async def set_batch(self, collection: str, documents: dict[str, dict]) -> None:
        requests = [ReplaceOne({"_id": doc_id}, dict(data), upsert=True) for doc_id, data in documents.items()]
        if requests:
            await self.db[collection].bulk_write(requests, ordered=True)
