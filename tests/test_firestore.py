from __future__ import annotations

import re

import pytest
from bson import ObjectId

from fakes import FakeFirestoreClient
from poster_bridge.storage.backends import DateRange
from poster_bridge.storage.database import CATALOG, RAW_HOOKS, TRANSACTIONS, DatabaseConfig, DualWriteDatabase
from poster_bridge.storage.firestore import BATCH_LIMIT, FirestoreBackend

pytestmark = pytest.mark.anyio


@pytest.fixture
def client() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture
def backend(client: FakeFirestoreClient) -> FirestoreBackend:
    return FirestoreBackend(client)


async def test_insert_many_skips_existing_documents(client: FakeFirestoreClient, backend: FirestoreBackend) -> None:
    client.data[TRANSACTIONS]["1"] = {"transaction_id": "1", "payed_sum": "old"}

    result = await backend.insert_many(
        TRANSACTIONS,
        [{"transaction_id": 1, "payed_sum": "new"}, {"transaction_id": 2}, {"transaction_id": 3}],
        "transaction_id",
    )

    assert (result.inserted_count, result.duplicate_count) == (2, 1)
    assert client.data[TRANSACTIONS]["1"]["payed_sum"] == "old"
    assert sorted(client.data[TRANSACTIONS]) == ["1", "2", "3"]
    assert client.commits == [2]


async def test_insert_many_counts_repeats_within_one_call(
    client: FakeFirestoreClient, backend: FirestoreBackend
) -> None:
    result = await backend.insert_many(
        TRANSACTIONS,
        [{"transaction_id": "7", "payed_sum": "a"}, {"transaction_id": "7", "payed_sum": "b"}],
        "transaction_id",
    )

    assert (result.inserted_count, result.duplicate_count) == (1, 1)
    assert client.data[TRANSACTIONS]["7"]["payed_sum"] == "a"


async def test_insert_many_commits_in_batches(client: FakeFirestoreClient, backend: FirestoreBackend) -> None:
    documents = [{"transaction_id": str(i)} for i in range(2 * BATCH_LIMIT + 1)]

    result = await backend.insert_many(TRANSACTIONS, documents, "transaction_id")

    assert result.inserted_count == 2 * BATCH_LIMIT + 1
    assert client.commits == [BATCH_LIMIT, BATCH_LIMIT, 1]


async def test_insert_many_with_only_duplicates_commits_nothing(
    client: FakeFirestoreClient, backend: FirestoreBackend
) -> None:
    client.data[TRANSACTIONS]["1"] = {"transaction_id": "1"}

    result = await backend.insert_many(TRANSACTIONS, [{"transaction_id": "1"}], "transaction_id")

    assert (result.inserted_count, result.duplicate_count) == (0, 1)
    assert client.commits == []


async def test_bulk_insert_through_database_is_duplicate_tolerant(client: FakeFirestoreClient) -> None:
    db = DualWriteDatabase(
        DatabaseConfig(enable_mongodb=False, read_from="firestore"), firestore=FirestoreBackend(client)
    )
    await db.transactions.insert_many([{"transaction_id": "1"}, {"transaction_id": "2"}])

    result = await db.transactions.insert_many([{"transaction_id": str(i)} for i in range(1, 6)])

    assert (result.inserted_count, result.duplicate_count) == (3, 2)


async def test_upsert_merges_into_existing_document(client: FakeFirestoreClient, backend: FirestoreBackend) -> None:
    client.data[TRANSACTIONS]["42"] = {"transaction_id": "42", "note": "keep", "payed_sum": "100"}

    await backend.upsert(TRANSACTIONS, "transaction_id", "42", {"_id": ObjectId(), "payed_sum": "150"})

    assert client.data[TRANSACTIONS]["42"] == {"transaction_id": "42", "note": "keep", "payed_sum": "150"}


async def test_insert_one_uses_given_id_and_converts_object_ids(
    client: FakeFirestoreClient, backend: FirestoreBackend
) -> None:
    oid = ObjectId()

    given = await backend.insert_one(RAW_HOOKS, {"_id": oid, "ref": oid}, doc_id=str(oid))
    minted = await backend.insert_one(RAW_HOOKS, {"action": "added"})

    assert given == str(oid)
    assert client.data[RAW_HOOKS][given] == {"ref": str(oid)}
    assert re.fullmatch(r"[0-9a-f]{24}", minted)


async def test_update_one_sets_nested_fields_only(client: FakeFirestoreClient, backend: FirestoreBackend) -> None:
    client.data[RAW_HOOKS]["abc"] = {
        "action": "closed",
        "metadata": {"received_at": "2025-01-01T00:00:00", "processed": False, "processing_error": None},
    }

    await backend.update_one(RAW_HOOKS, "abc", {"metadata": {"processed": True, "saved_to_transactions": True}})

    assert client.data[RAW_HOOKS]["abc"]["metadata"] == {
        "received_at": "2025-01-01T00:00:00",
        "processed": True,
        "processing_error": None,
        "saved_to_transactions": True,
    }


async def test_set_batch_writes_catalog_documents_in_one_commit(
    client: FakeFirestoreClient, backend: FirestoreBackend
) -> None:
    await backend.set_batch(
        CATALOG,
        {"metadata": {"items_count": 1}, "items": {"items": [{"id": "1", "name": "Latte", "type": 2}]}},
    )

    assert client.commits == [2]
    assert await backend.get(CATALOG, "metadata") == {"items_count": 1}
    assert await backend.get(CATALOG, "missing") is None


async def test_find_applies_inclusive_range_and_limit(client: FakeFirestoreClient, backend: FirestoreBackend) -> None:
    for tid, closed in [
        ("1", "2025-01-14 23:59:59"),
        ("2", "2025-01-15 00:00:00"),
        ("3", "2025-01-16 12:00:00"),
        ("4", "2025-01-16 23:59:59"),
        ("5", "2025-01-17 00:00:00"),
    ]:
        client.data[TRANSACTIONS][tid] = {"transaction_id": tid, "date_close_date": closed}

    rows = await backend.find(TRANSACTIONS, DateRange("2025-01-15", "2025-01-16"), 10)
    limited = await backend.find(TRANSACTIONS, None, 2)

    assert [r["_id"] for r in rows] == ["2", "3", "4"]
    assert len(limited) == 2
