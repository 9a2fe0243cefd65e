from __future__ import annotations

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from ..models import InsertManyResult
from .backends import DateRange, flatten_update, new_document_id, to_firestore_document

# Firestore limit on writes per batch
BATCH_LIMIT = 500


class FirestoreBackend:
    name = "firestore"

    def __init__(self, client: firestore.AsyncClient) -> None:
        self.client = client

    @classmethod
    def connect(cls, project_id: str) -> "FirestoreBackend":
        return cls(firestore.AsyncClient(project=project_id))

    async def find(self, collection: str, date_range: DateRange | None, limit: int) -> list[dict]:
        query = self.client.collection(collection)
        if date_range is not None:
            query = query.where(filter=FieldFilter(date_range.field, ">=", date_range.lower)).where(
                filter=FieldFilter(date_range.field, "<=", date_range.upper)
            )
        snapshots = await query.limit(limit).get()
        return [{"_id": snap.id, **(snap.to_dict() or {})} for snap in snapshots]

    async def upsert(self, collection: str, key_field: str, key: str, document: dict) -> None:
        ref = self.client.collection(collection).document(str(key))
        await ref.set(to_firestore_document(document), merge=True)

    async def insert_many(self, collection: str, documents: list[dict], id_field: str) -> InsertManyResult:
        inserted = 0
        duplicates = 0
        seen: set[str] = set()
        for start in range(0, len(documents), BATCH_LIMIT):
            batch = self.client.batch()
            pending = 0
            for document in documents[start : start + BATCH_LIMIT]:
                doc_id = str(document[id_field])
                if doc_id in seen:
                    duplicates += 1
                    continue
                seen.add(doc_id)
                ref = self.client.collection(collection).document(doc_id)
                snapshot = await ref.get()
                if snapshot.exists:
                    duplicates += 1
                    continue
                batch.set(ref, to_firestore_document(document))
                pending += 1
            if pending:
                await batch.commit()
                inserted += pending
        return InsertManyResult(inserted_count=inserted, duplicate_count=duplicates)

    async def insert_one(self, collection: str, document: dict, doc_id: str | None = None) -> str:
        doc_id = doc_id or new_document_id()
        await self.client.collection(collection).document(doc_id).set(to_firestore_document(document))
        return doc_id

    async def update_one(self, collection: str, doc_id: str, update: dict) -> None:
        # Firestore reads dotted keys in update() as nested field paths.
        ref = self.client.collection(collection).document(doc_id)
        await ref.update(flatten_update(to_firestore_document(update)))

    async def get(self, collection: str, doc_id: str) -> dict | None:
        snapshot = await self.client.collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    async def set_batch(self, collection: str, documents: dict[str, dict]) -> None:
        batch = self.client.batch()
        for doc_id, data in documents.items():
            batch.set(self.client.collection(collection).document(doc_id), to_firestore_document(data))
        await batch.commit()
