"""
Lazily refreshed product/ingredient catalog.

The catalog lives in two documents of the ``catalog`` collection: ``metadata``
(``synced_at``, ``items_count``) and ``items`` (the whole snapshot). Both are
written in one batch on every refresh. A read within the TTL never touches the
Poster API.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .logging_setup import get_logger
from .models import CatalogItem, CatalogItemType, CatalogMetadata
from .secret_store import POSTER_TOKEN, SecretProvider

logger = get_logger(__name__)

CACHE_TTL = timedelta(hours=24)
METADATA_DOC = "metadata"
ITEMS_DOC = "items"
UNKNOWN_NAME = "Unknown"


class CatalogStore(Protocol):
    async def get(self, doc_id: str) -> dict | None: ...

    async def set_batch(self, documents: dict[str, dict]) -> None: ...


class CatalogSource(Protocol):
    async def fetch_catalog(self, token: str) -> list[CatalogItem]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timestamp(value: object) -> datetime | None:
    """Turn a stored ``synced_at`` into an aware datetime.

    Handles datetimes (naive ones are UTC, as pymongo returns them), wrapper
    objects exposing ``to_datetime()``/``ToDatetime()``, ISO strings and epoch
    seconds.
    """
    if value is None:
        return None
    if not isinstance(value, datetime):
        if hasattr(value, "to_datetime"):
            value = value.to_datetime()
        elif hasattr(value, "ToDatetime"):
            value = value.ToDatetime()
        elif isinstance(value, str):
            value = datetime.fromisoformat(value)
        elif isinstance(value, (int, float)):
            value = datetime.fromtimestamp(value, tz=timezone.utc)
        else:
            return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def create_catalog_map(catalog: Iterable[CatalogItem]) -> dict[str, CatalogItem]:
    return {item.id: item for item in catalog}


@dataclass(slots=True)
class CatalogCache:
    store: CatalogStore
    source: CatalogSource
    secrets: SecretProvider
    ttl: timedelta = CACHE_TTL
    clock: Callable[[], datetime] = field(default=_utcnow)

    async def get_catalog(self, token: str | None = None) -> list[CatalogItem]:
        metadata = await self.store.get(METADATA_DOC)
        synced_at = resolve_timestamp((metadata or {}).get("synced_at"))

        if synced_at is not None:
            age = self.clock() - synced_at
            if age < self.ttl:
                logger.info(
                    "Using cached catalog",
                    extra={"hours_since_sync": round(age.total_seconds() / 3600, 1)},
                )
                return await self._cached_items()

        return await self._refresh(token)

    async def refresh_catalog(self, token: str | None = None) -> list[CatalogItem]:
        logger.info("Force refreshing catalog")
        return await self._refresh(token)

    async def get_catalog_item(self, item_id: str, item_type: CatalogItemType | int) -> CatalogItem | None:
        for item in await self.get_catalog():
            if item.id == str(item_id) and item.type == item_type:
                return item
        return None

    async def get_catalog_item_name(self, item_id: str) -> str:
        try:
            catalog = await self.get_catalog()
        except Exception:
            logger.warning("Catalog unavailable for name lookup", extra={"item_id": str(item_id)}, exc_info=True)
            return UNKNOWN_NAME
        item = create_catalog_map(catalog).get(str(item_id))
        return item.name if item and item.name else UNKNOWN_NAME

    async def _cached_items(self) -> list[CatalogItem]:
        document = await self.store.get(ITEMS_DOC)
        if not document:
            return []
        return [CatalogItem.model_validate(raw) for raw in document.get("items") or []]

    async def _refresh(self, token: str | None) -> list[CatalogItem]:
        logger.info("Refreshing catalog from Poster")
        token = token or await self.secrets.get_secret(POSTER_TOKEN)
        items = await self.source.fetch_catalog(token)

        now = self.clock()
        metadata = CatalogMetadata(synced_at=now, items_count=len(items))
        await self.store.set_batch(
            {
                METADATA_DOC: metadata.model_dump(),
                ITEMS_DOC: {
                    "items": [item.model_dump(mode="json", exclude_none=True) for item in items],
                    "updated_at": now,
                },
            }
        )

        logger.info("Catalog refreshed", extra={"items_count": len(items)})
        return items
