"""
Bulk pull of Poster transactions into the transactions collection.

Poster lists transactions newest first, 100 per page, and does not filter by
date on every deployment, so rows are filtered client side against
``date_from``/``date_to``. The loop stops on the first empty page, on a page
whose dated rows are all older than ``date_from``, after ``max_idle_pages``
consecutive in-window pages without a single new row, or at ``max_pages``.
Rows that already exist are counted as ``affectedWithError`` and skipped.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

from ...catalog import CatalogCache
from ...logging_setup import get_logger
from ...models import SyncStats
from ...poster_client import PosterClient
from ...secret_store import API_AUTH_KEY, POSTER_TOKEN, SecretProvider
from ...storage.database import DualWriteDatabase
from ..dependencies import DatabaseProvider
from ..responses import HandlerResult, check_shared_secret, first_value

logger = get_logger(__name__)

AUTH_PARAM = "auth-token"
DATE_FIELD = "date_close_date"
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _row_date(row: Mapping) -> str | None:
    value = row.get(DATE_FIELD)
    if not value:
        return None
    return str(value)[:10]


def is_older(row: Mapping, date_from: str) -> bool:
    day = _row_date(row)
    return day is not None and day < date_from


def in_window(row: Mapping, date_from: str, date_to: str | None) -> bool:
    day = _row_date(row)
    if day is None:
        return True
    if day < date_from:
        return False
    return date_to is None or day <= date_to


@dataclass(frozen=True, slots=True)
class TransactionSync:
    db: DualWriteDatabase
    poster: PosterClient
    max_idle_pages: int = 5
    max_pages: int = 1000

    async def run(
        self,
        token: str,
        *,
        date_from: str,
        date_to: str | None = None,
        status: str | None = None,
    ) -> SyncStats:
        stats = SyncStats()
        idle_pages = 0

        for page in range(1, self.max_pages + 1):
            logger.info("Processing page", extra={"page": page})
            result = await self.poster.fetch_transactions_page(
                token, page=page, date_from=date_from, date_to=date_to, status=status
            )
            if page == 1 and result.count is not None:
                stats.totalRows = result.count

            if not result.rows:
                logger.info("No more data, stopping pagination", extra={"page": page})
                break
            if all(is_older(row, date_from) for row in result.rows):
                logger.info("Page is older than dateFrom, stopping pagination", extra={"page": page})
                break

            rows = [row for row in result.rows if in_window(row, date_from, date_to)]
            inserted = 0
            if rows:
                outcome = await self.db.transactions.insert_many(rows)
                inserted = outcome.inserted_count
                stats.affectedRows += outcome.inserted_count
                stats.affectedWithError += outcome.duplicate_count
                logger.info(
                    "Page stored",
                    extra={
                        "page": page,
                        "fetched": len(result.rows),
                        "inserted": outcome.inserted_count,
                        "duplicates": outcome.duplicate_count,
                    },
                )
            stats.pagesProcessed += 1

            # Pages entirely newer than date_to leave the idle counter alone.
            if rows:
                idle_pages = 0 if inserted else idle_pages + 1
            if idle_pages >= self.max_idle_pages:
                logger.warning("No new rows for consecutive pages, stopping", extra={"pages": idle_pages})
                break
        else:
            logger.warning("Page limit reached, stopping sync", extra={"max_pages": self.max_pages})

        logger.info("Sync completed", extra=stats.model_dump())
        return stats


async def handle_sync(
    query: Mapping[str, object],
    *,
    secrets: SecretProvider,
    database: DatabaseProvider,
    poster: PosterClient,
    max_idle_pages: int = 5,
    max_pages: int = 1000,
) -> HandlerResult:
    try:
        if not await check_shared_secret(query, AUTH_PARAM, API_AUTH_KEY, secrets):
            logger.warning("Invalid or missing auth token")
            return HandlerResult(401, {"success": False, "error": "Unauthorized"})

        date_from = first_value(query.get("dateFrom"))
        date_to = first_value(query.get("dateTo")) or None
        status = first_value(query.get("status")) or None
        if not date_from or not DATE_RE.match(date_from) or (date_to and not DATE_RE.match(date_to)):
            return HandlerResult(
                400,
                {
                    "success": False,
                    "error": "Bad Request",
                    "message": "dateFrom parameter is required (format: YYYY-MM-DD)",
                },
            )

        logger.info("Sync started", extra={"date_from": date_from, "date_to": date_to, "status": status})
        token = await secrets.get_secret(POSTER_TOKEN)
        sync = TransactionSync(db=await database(), poster=poster, max_idle_pages=max_idle_pages, max_pages=max_pages)
        stats = await sync.run(token, date_from=date_from, date_to=date_to, status=status)
        return HandlerResult(200, {"success": True, "data": stats.model_dump()})
    except Exception:
        logger.exception("Sync failed")
        return HandlerResult(500, {"success": False, "error": "Internal server error", "message": "Unexpected error"})


async def handle_catalog_refresh(
    query: Mapping[str, object],
    *,
    secrets: SecretProvider,
    database: DatabaseProvider,
    poster: PosterClient,
) -> HandlerResult:
    try:
        if not await check_shared_secret(query, AUTH_PARAM, API_AUTH_KEY, secrets):
            logger.warning("Invalid or missing auth token")
            return HandlerResult(401, {"success": False, "error": "Unauthorized"})

        db = await database()
        cache = CatalogCache(store=db.catalog, source=poster, secrets=secrets)
        items = await cache.refresh_catalog()
        return HandlerResult(200, {"success": True, "items_count": len(items)})
    except Exception:
        logger.exception("Catalog refresh failed")
        return HandlerResult(500, {"success": False, "error": "Internal server error", "message": "Unexpected error"})
