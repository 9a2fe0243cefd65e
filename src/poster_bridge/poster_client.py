from __future__ import annotations

from dataclasses import dataclass

import httpx

from .http_client import HttpRequestError, get_json
from .logging_setup import get_logger
from .models import CatalogItem, CatalogItemType

logger = get_logger(__name__)

# Service/system ingredient categories, not real stock.
IGNORED_INGREDIENT_CATEGORIES = frozenset({14, 17, 4, 6, 7, 8, 15, 18})

# Poster product type -> catalog item type
PRODUCT_TYPE_MAP = {
    1: CatalogItemType.PREPACK,
    2: CatalogItemType.RECIPE,
    3: CatalogItemType.PRODUCT,
}

TRANSACTIONS_PAGE_SIZE = 100


def _to_int(value: object) -> int | None:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return None


def map_product(raw: dict) -> CatalogItem:
    product_type = PRODUCT_TYPE_MAP.get(_to_int(raw.get("type")), CatalogItemType.PRODUCT)
    return CatalogItem(
        id=str(raw["product_id"]),
        name=str(raw.get("product_name") or ""),
        type=product_type,
        unit=raw.get("unit"),
        category_id=raw.get("category_id"),
    )


def map_ingredient(raw: dict) -> CatalogItem | None:
    if _to_int(raw.get("category_id")) in IGNORED_INGREDIENT_CATEGORIES:
        return None
    return CatalogItem(
        id=str(raw["ingredient_id"]),
        name=str(raw.get("ingredient_name") or ""),
        type=CatalogItemType.INGREDIENT,
        unit=raw.get("ingredient_unit"),
        category_id=raw.get("category_id"),
    )


@dataclass(frozen=True, slots=True)
class TransactionsPage:
    rows: list[dict]
    count: int | None = None


@dataclass(frozen=True, slots=True)
class PosterClient:
    """Client for the Poster POS API. The token travels as a query parameter."""

    base_url: str = "https://joinposter.com/api"
    timeout_s: float = 10.0
    transport: httpx.AsyncBaseTransport | None = None

    async def _get(self, method: str, token: str, *, resource: str, **params) -> dict:
        query = {"token": token, **{k: v for k, v in params.items() if v is not None}}
        return await get_json(
            f"{self.base_url}/{method}",
            query,
            resource=resource,
            timeout_s=self.timeout_s,
            transport=self.transport,
        )

    async def fetch_catalog(self, token: str) -> list[CatalogItem]:
        # Both listings are fetched before anything is returned; a failure of
        # either one fails the whole catalog.
        products = await self._get("menu.getProducts", token, resource="products")
        ingredients = await self._get("menu.getIngredients", token, resource="ingredients")

        items = [map_product(raw) for raw in products.get("response") or []]
        skipped = 0
        for raw in ingredients.get("response") or []:
            item = map_ingredient(raw)
            if item is None:
                skipped += 1
                continue
            items.append(item)

        logger.info(
            "Fetched catalog from Poster",
            extra={"items_count": len(items), "ignored_ingredients": skipped},
        )
        return items

    async def fetch_transaction(self, token: str, transaction_id: int | str) -> dict | None:
        """Full transaction detail, or None when Poster has nothing usable.

        Non-2xx answers and timeouts degrade to None as well: the detail is an
        enrichment of an already acknowledged webhook.
        """
        try:
            data = await self._get(
                "dash.getTransaction",
                token,
                resource="transaction",
                transaction_id=transaction_id,
                include_products="true",
                include_history="true",
                include_delivery="true",
            )
        except HttpRequestError as exc:
            logger.warning(
                "Transaction detail unavailable",
                extra={"transaction_id": str(transaction_id), "error": str(exc)},
            )
            return None

        payload = data.get("response")
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if not isinstance(payload, dict) or not payload.get("transaction_id"):
            return None
        return payload

    async def fetch_transaction_write_offs(self, token: str, transaction_id: int | str) -> list[dict]:
        data = await self._get(
            "dash.getTransactionWriteoffs",
            token,
            resource="write-offs",
            transaction_id=transaction_id,
        )
        rows = data.get("response")
        if not rows:
            return []
        return list(rows)

    async def fetch_transactions_page(
        self,
        token: str,
        *,
        page: int,
        date_from: str | None = None,
        date_to: str | None = None,
        status: str | None = None,
        per_page: int = TRANSACTIONS_PAGE_SIZE,
    ) -> TransactionsPage:
        data = await self._get(
            "dash.getTransactions",
            token,
            resource="transactions",
            page=page,
            per_page=per_page,
            date_from=date_from,
            date_to=date_to,
            status=status,
        )
        payload = data.get("response")
        count = data.get("count")
        if isinstance(payload, dict):
            count = payload.get("count", count)
            payload = payload.get("data")
        return TransactionsPage(rows=list(payload or []), count=_to_int(count))
