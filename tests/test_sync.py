from __future__ import annotations

import itertools

import httpx
import pytest

from fakes import POSTER_URL, FakeSecrets, InMemoryBackend, poster_transport, sequence
from poster_bridge.poster_client import PosterClient
from poster_bridge.services.sync_service.sync import (
    TransactionSync,
    handle_catalog_refresh,
    handle_sync,
    in_window,
    is_older,
)
from poster_bridge.storage.database import CATALOG, TRANSACTIONS, DualWriteDatabase

pytestmark = pytest.mark.anyio

AUTH = {"auth-token": "valid-token"}


def _row(tid: str, closed: str) -> dict:
    return {"transaction_id": tid, "date_close_date": closed, "payed_sum": "1000"}


def _poster(routes: dict, calls: list | None = None) -> PosterClient:
    return PosterClient(base_url=POSTER_URL, transport=poster_transport(routes, calls))


def _provider(db: DualWriteDatabase):
    async def provide() -> DualWriteDatabase:
        return db

    return provide


async def test_sync_inserts_new_rows(db: DualWriteDatabase, mongo: InMemoryBackend, firestore: InMemoryBackend) -> None:
    calls: list[httpx.Request] = []
    pages = sequence(
        {"response": [_row("2", "2025-01-16 09:00:00"), _row("1", "2025-01-15 09:00:00")], "count": 2},
        {"response": []},
    )

    stats = await TransactionSync(db=db, poster=_poster({"dash.getTransactions": pages}, calls)).run(
        "tkn", date_from="2025-01-15"
    )

    assert stats.model_dump() == {"totalRows": 2, "affectedRows": 2, "affectedWithError": 0, "pagesProcessed": 1}
    assert sorted(mongo.collections[TRANSACTIONS]) == ["1", "2"]
    assert sorted(firestore.collections[TRANSACTIONS]) == ["1", "2"]
    assert [c.url.params["page"] for c in calls] == ["1", "2"]
    assert calls[0].url.params["date_from"] == "2025-01-15"


async def test_sync_counts_existing_rows_as_errors(db: DualWriteDatabase, mongo: InMemoryBackend) -> None:
    mongo.collections[TRANSACTIONS]["1"] = _row("1", "2025-01-15 09:00:00")
    pages = sequence(
        {"response": [_row("2", "2025-01-16 09:00:00"), _row("1", "2025-01-15 09:00:00")], "count": 2},
        {"response": []},
    )

    stats = await TransactionSync(db=db, poster=_poster({"dash.getTransactions": pages})).run(
        "tkn", date_from="2025-01-15"
    )

    assert (stats.affectedRows, stats.affectedWithError) == (1, 1)


async def test_sync_stops_when_page_is_older_than_window(db: DualWriteDatabase, mongo: InMemoryBackend) -> None:
    pages = sequence({"response": [_row("1", "2024-12-30 09:00:00"), _row("2", "2024-12-29 09:00:00")], "count": 2})

    stats = await TransactionSync(db=db, poster=_poster({"dash.getTransactions": pages})).run(
        "tkn", date_from="2025-01-01"
    )

    assert stats.pagesProcessed == 0
    assert stats.totalRows == 2
    assert "insert_many" not in mongo.calls


async def test_sync_filters_rows_outside_window(db: DualWriteDatabase, mongo: InMemoryBackend) -> None:
    pages = sequence(
        {
            "response": [
                _row("3", "2025-01-20 09:00:00"),
                _row("2", "2025-01-10 09:00:00"),
                _row("1", "2024-12-31 09:00:00"),
            ]
        },
        {"response": []},
    )

    stats = await TransactionSync(db=db, poster=_poster({"dash.getTransactions": pages})).run(
        "tkn", date_from="2025-01-01", date_to="2025-01-15"
    )

    assert list(mongo.collections[TRANSACTIONS]) == ["2"]
    assert stats.affectedRows == 1


async def test_sync_stops_after_idle_pages(db: DualWriteDatabase) -> None:
    calls: list[httpx.Request] = []
    same_page = {"response": [_row("1", "2025-01-15 09:00:00")]}

    stats = await TransactionSync(
        db=db,
        poster=_poster({"dash.getTransactions": same_page}, calls),
        max_idle_pages=2,
    ).run("tkn", date_from="2025-01-01")

    # first page inserts, the next two are all duplicates
    assert stats.pagesProcessed == 3
    assert len(calls) == 3
    assert (stats.affectedRows, stats.affectedWithError) == (1, 2)


async def test_sync_walks_past_pages_newer_than_date_to(db: DualWriteDatabase, mongo: InMemoryBackend) -> None:
    newer = [{"response": [_row(f"n{page}", "2025-03-01 09:00:00")]} for page in range(1, 7)]
    pages = sequence(*newer, {"response": [_row("1", "2025-01-10 09:00:00")]}, {"response": []})

    stats = await TransactionSync(db=db, poster=_poster({"dash.getTransactions": pages})).run(
        "tkn", date_from="2025-01-01", date_to="2025-01-31"
    )

    assert list(mongo.collections[TRANSACTIONS]) == ["1"]
    assert stats.affectedRows == 1
    assert stats.pagesProcessed == 7


async def test_sync_stops_at_page_limit(db: DualWriteDatabase) -> None:
    ids = itertools.count(1)

    def fresh_page(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"response": [_row(str(next(ids)), "2025-01-15 09:00:00")]})

    stats = await TransactionSync(
        db=db,
        poster=_poster({"dash.getTransactions": fresh_page}),
        max_pages=3,
    ).run("tkn", date_from="2025-01-01")

    assert stats.pagesProcessed == 3
    assert stats.affectedRows == 3


def test_window_helpers() -> None:
    assert is_older({"date_close_date": "2024-12-31 23:59:59"}, "2025-01-01")
    assert not is_older({}, "2025-01-01")
    assert in_window({}, "2025-01-01", None)
    assert in_window({"date_close_date": "2025-01-15 00:00:00"}, "2025-01-15", "2025-01-15")
    assert not in_window({"date_close_date": "2025-01-16 00:00:00"}, "2025-01-01", "2025-01-15")


async def test_handle_sync_success(db: DualWriteDatabase, secrets: FakeSecrets) -> None:
    pages = sequence({"response": [_row("1", "2025-01-15 09:00:00")], "count": 1}, {"response": []})

    result = await handle_sync(
        {**AUTH, "dateFrom": "2025-01-01"},
        secrets=secrets,
        database=_provider(db),
        poster=_poster({"dash.getTransactions": pages}),
    )

    assert result.status_code == 200
    assert result.body == {
        "success": True,
        "data": {"totalRows": 1, "affectedRows": 1, "affectedWithError": 0, "pagesProcessed": 1},
    }
    assert "poster-token" in secrets.requested


@pytest.mark.parametrize("query", [{}, {"auth-token": "nope", "dateFrom": "2025-01-01"}])
async def test_handle_sync_rejects_bad_token(db: DualWriteDatabase, secrets: FakeSecrets, query: dict) -> None:
    calls: list[httpx.Request] = []

    result = await handle_sync(query, secrets=secrets, database=_provider(db), poster=_poster({}, calls))

    assert (result.status_code, result.body) == (401, {"success": False, "error": "Unauthorized"})
    assert calls == []


@pytest.mark.parametrize("params", [{}, {"dateFrom": "15.01.2025"}, {"dateFrom": "2025-01-01", "dateTo": "tomorrow"}])
async def test_handle_sync_requires_date_from(db: DualWriteDatabase, secrets: FakeSecrets, params: dict) -> None:
    result = await handle_sync({**AUTH, **params}, secrets=secrets, database=_provider(db), poster=_poster({}))

    assert result.status_code == 400
    assert result.body == {
        "success": False,
        "error": "Bad Request",
        "message": "dateFrom parameter is required (format: YYYY-MM-DD)",
    }


async def test_handle_sync_upstream_failure_is_500(db: DualWriteDatabase, secrets: FakeSecrets) -> None:
    result = await handle_sync(
        {**AUTH, "dateFrom": "2025-01-01"},
        secrets=secrets,
        database=_provider(db),
        poster=_poster({"dash.getTransactions": (503, {})}),
    )

    assert result.status_code == 500
    assert result.body["success"] is False


async def test_handle_catalog_refresh(db: DualWriteDatabase, mongo: InMemoryBackend, secrets: FakeSecrets) -> None:
    routes = {
        "menu.getProducts": {"response": [{"product_id": "1", "product_name": "Latte", "type": "2"}]},
        "menu.getIngredients": {"response": [{"ingredient_id": "9", "ingredient_name": "Milk", "category_id": "1"}]},
    }

    result = await handle_catalog_refresh(AUTH, secrets=secrets, database=_provider(db), poster=_poster(routes))

    assert (result.status_code, result.body) == (200, {"success": True, "items_count": 2})
    assert mongo.collections[CATALOG]["metadata"]["items_count"] == 2
