from __future__ import annotations

from collections.abc import Iterable, Mapping

from .catalog import create_catalog_map
from .logging_setup import get_logger
from .models import CatalogItem, CatalogItemType, WriteOff
from .poster_client import PosterClient

logger = get_logger(__name__)


def _is_set(value: object) -> bool:
    return value is not None and str(value) not in ("", "0")


def _to_float(value: object) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def classify_write_off(raw: Mapping) -> CatalogItemType:
    # Modifier beats ingredient beats prepack when several ids are populated.
    if _is_set(raw.get("modificator_id")):
        return CatalogItemType.MODIFIER
    if _is_set(raw.get("ingredient_id")):
        return CatalogItemType.INGREDIENT
    if _is_set(raw.get("prepack_id")):
        return CatalogItemType.PREPACK
    return CatalogItemType.INGREDIENT


def enrich_write_offs(raw_write_offs: Iterable[Mapping], catalog: Iterable[CatalogItem]) -> list[WriteOff]:
    catalog_map = create_catalog_map(catalog)
    enriched: list[WriteOff] = []
    for raw in raw_write_offs:
        ingredient_id = raw.get("ingredient_id")
        product_id = raw.get("product_id")

        ingredient_name = None
        if _is_set(ingredient_id):
            item = catalog_map.get(str(ingredient_id))
            ingredient_name = item.name if item else None

        product_name = None
        if _is_set(product_id):
            item = catalog_map.get(str(product_id))
            product_name = item.name if item else None

        enriched.append(
            WriteOff(
                write_off_id=raw.get("write_off_id"),
                tr_product_id=raw.get("tr_product_id"),
                storage_id=raw.get("storage_id"),
                ingredient_id=ingredient_id,
                ingredient_name=ingredient_name,
                product_id=product_id,
                product_name=product_name,
                modificator_id=raw.get("modificator_id"),
                prepack_id=raw.get("prepack_id"),
                weight=_to_float(raw.get("weight")),
                unit=raw.get("unit"),
                cost=_to_float(raw.get("cost")),
                cost_netto=_to_float(raw.get("cost_netto")),
                time=raw.get("time"),
                type=classify_write_off(raw),
            )
        )
    return enriched


async def get_transaction_write_offs(
    poster: PosterClient,
    token: str,
    transaction_id: int | str,
    catalog: list[CatalogItem],
) -> list[WriteOff]:
    raw_write_offs = await poster.fetch_transaction_write_offs(token, transaction_id)
    logger.info(
        "Fetched write-offs",
        extra={"transaction_id": str(transaction_id), "count": len(raw_write_offs)},
    )
    return enrich_write_offs(raw_write_offs, catalog)


def enrich_products(products: Iterable[Mapping], catalog: Iterable[CatalogItem]) -> list[dict]:
    catalog_map = create_catalog_map(catalog)
    enriched = []
    for product in products:
        item = catalog_map.get(str(product.get("product_id")))
        enriched.append({**product, "product_name": item.name if item else None})
    return enriched


def _amount(write_off: WriteOff | Mapping, field: str) -> float:
    value = write_off.get(field) if isinstance(write_off, Mapping) else getattr(write_off, field, None)
    return _to_float(value)


def calculate_write_offs_total_cost(write_offs: Iterable[WriteOff | Mapping]) -> float:
    return sum((_amount(wo, "cost") for wo in write_offs), 0.0)


def calculate_write_offs_total_cost_netto(write_offs: Iterable[WriteOff | Mapping]) -> float:
    return sum((_amount(wo, "cost_netto") for wo in write_offs), 0.0)
