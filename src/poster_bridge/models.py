from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field


class CatalogItemType(IntEnum):
    PRODUCT = 1
    RECIPE = 2
    PREPACK = 3
    INGREDIENT = 4
    MODIFIER = 5


class PosterAction(str, Enum):
    ADDED = "added"
    CHANGED = "changed"
    CLOSED = "closed"
    REMOVED = "removed"
    TRANSFORMED = "transformed"


class CatalogItem(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str
    type: CatalogItemType
    unit: str | None = None
    category_id: str | None = None


class CatalogMetadata(BaseModel):
    synced_at: datetime
    items_count: int


class HookMetadata(BaseModel):
    received_at: datetime
    query_params: dict = Field(default_factory=dict)
    processed: bool = False
    processed_at: datetime | None = None
    saved_to_transactions: bool = False
    processing_error: str | None = None
    error_time: datetime | None = None


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    account: str | None = None
    account_number: str | None = None
    object: str | None = None
    object_id: int
    action: PosterAction
    time: str | None = None
    verify: str | None = None
    data: dict = Field(default_factory=dict)


class WriteOff(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    write_off_id: str | None = None
    tr_product_id: str | None = None
    storage_id: str | None = None
    ingredient_id: str | None = None
    ingredient_name: str | None = None
    product_id: str | None = None
    product_name: str | None = None
    modificator_id: str | None = None
    prepack_id: str | None = None
    weight: float = 0.0
    unit: str | None = None
    cost: float = 0.0
    cost_netto: float = 0.0
    time: str | None = None
    type: CatalogItemType


class InsertManyResult(BaseModel):
    inserted_count: int = 0
    duplicate_count: int = 0


class SyncStats(BaseModel):
    totalRows: int = 0
    affectedRows: int = 0
    affectedWithError: int = 0
    pagesProcessed: int = 0
