"""
Dual-write document database.

Writes go to every enabled backend (MongoDB and/or Firestore), reads come from
exactly one configured backend. Call sites use the logical collections
(``db.transactions``, ``db.raw_hooks``, ``db.catalog``) and never branch on
which store is active, so the same code runs against MongoDB only, Firestore
only, or both during a cutover.

Fan-out policy: all enabled backends are written concurrently and every
outcome is awaited. If any backend fails the whole call fails with
``DualWriteError`` (chained from the first failure in backend order); there is
no silent partial success. MongoDB is the system of record: it mints raw-hook
ids and its bulk-insert counts are the ones returned while it is enabled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from ..logging_setup import get_logger
from ..models import InsertManyResult
from ..secret_store import MONGODB_URI, SecretProvider
from ..settings import Settings
from .backends import DateRange, DocumentBackend, new_document_id
from .firestore import FirestoreBackend
from .mongodb import MongoBackend

logger = get_logger(__name__)

TRANSACTIONS = "transactions"
RAW_HOOKS = "poster-hooks-data"
CATALOG = "catalog"

TRANSACTION_KEY = "transaction_id"
DEFAULT_FIND_LIMIT = 100


class DualWriteError(RuntimeError):
    def __init__(self, operation: str, failures: dict[str, BaseException]) -> None:
        names = ", ".join(failures)
        super().__init__(f"{operation} failed on: {names}")
        self.operation = operation
        self.failures = failures


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    enable_mongodb: bool = True
    enable_firestore: bool = True
    read_from: str = "mongodb"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabaseConfig":
        return cls(
            enable_mongodb=settings.enable_mongodb,
            enable_firestore=settings.enable_firestore,
            read_from=settings.read_from,
        )


class DualWriteDatabase:
    def __init__(
        self,
        config: DatabaseConfig,
        *,
        mongodb: DocumentBackend | None = None,
        firestore: DocumentBackend | None = None,
    ) -> None:
        if config.read_from not in ("mongodb", "firestore"):
            raise ValueError(f"Unknown read backend: {config.read_from}")
        self.config = config
        self.mongodb = mongodb
        self.firestore = firestore

        self.transactions = TransactionsCollection(self)
        self.raw_hooks = RawHooksCollection(self)
        self.catalog = CatalogCollection(self)

    @property
    def primary(self) -> DocumentBackend | None:
        """MongoDB when writes to it are enabled."""
        return self.mongodb if self.config.enable_mongodb else None

    @property
    def secondary(self) -> DocumentBackend | None:
        return self.firestore if self.config.enable_firestore else None

    def writers(self) -> list[DocumentBackend]:
        return [b for b in (self.primary, self.secondary) if b is not None]

    def reader(self) -> DocumentBackend:
        backend = self.mongodb if self.config.read_from == "mongodb" else self.firestore
        if backend is None:
            raise RuntimeError(f"Read backend {self.config.read_from} is not connected")
        return backend

    async def fan_out(
        self,
        operation: str,
        call: Callable[[DocumentBackend], Awaitable[object]],
    ) -> dict[str, object]:
        backends = self.writers()
        outcomes = await asyncio.gather(*(call(b) for b in backends), return_exceptions=True)

        results: dict[str, object] = {}
        failures: dict[str, BaseException] = {}
        for backend, outcome in zip(backends, outcomes):
            if isinstance(outcome, BaseException):
                failures[backend.name] = outcome
                logger.error(
                    "Backend write failed",
                    extra={"operation": operation, "backend": backend.name},
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
            else:
                results[backend.name] = outcome

        if failures:
            raise DualWriteError(operation, failures) from next(iter(failures.values()))
        return results


class TransactionsCollection:
    def __init__(self, db: DualWriteDatabase) -> None:
        self._db = db

    async def find(self, date_range: DateRange | None = None, *, limit: int = DEFAULT_FIND_LIMIT) -> list[dict]:
        return await self._db.reader().find(TRANSACTIONS, date_range, limit)

    async def upsert(self, transaction_id: str, document: dict) -> None:
        key = str(transaction_id)
        await self._db.fan_out("transactions.upsert", lambda b: b.upsert(TRANSACTIONS, TRANSACTION_KEY, key, document))

    async def insert_many(self, documents: list[dict]) -> InsertManyResult:
        results = await self._db.fan_out(
            "transactions.insert_many",
            lambda b: b.insert_many(TRANSACTIONS, documents, TRANSACTION_KEY),
        )
        if not results:
            return InsertManyResult()
        primary = self._db.primary or self._db.secondary
        return results[primary.name]


class RawHooksCollection:
    def __init__(self, db: DualWriteDatabase) -> None:
        self._db = db

    async def insert_one(self, document: dict) -> str:
        # The secondary reuses the id minted by the primary so both stores
        # address the same record.
        primary = self._db.primary
        secondary = self._db.secondary

        doc_id = await primary.insert_one(RAW_HOOKS, document) if primary is not None else new_document_id()
        if secondary is not None:
            try:
                await secondary.insert_one(RAW_HOOKS, document, doc_id=doc_id)
            except Exception:
                if primary is not None:
                    await self._mark_orphan(primary, doc_id, secondary.name)
                raise
        return doc_id

    async def _mark_orphan(self, primary: DocumentBackend, doc_id: str, failed: str) -> None:
        # The primary copy must not stay processed=false without an error.
        message = f"raw_hooks.insert_one failed on: {failed}"
        logger.error("Raw webhook stored on one backend only", extra={"raw_hook_id": doc_id, "backend": failed})
        try:
            await primary.update_one(
                RAW_HOOKS,
                doc_id,
                {"metadata": {"processing_error": message, "error_time": datetime.now(timezone.utc)}},
            )
        except Exception:
            logger.exception("Failed to record raw webhook error", extra={"raw_hook_id": doc_id})

    async def update_one(self, doc_id: str, update: dict) -> None:
        await self._db.fan_out("raw_hooks.update_one", lambda b: b.update_one(RAW_HOOKS, doc_id, update))


class CatalogCollection:
    def __init__(self, db: DualWriteDatabase) -> None:
        self._db = db

    async def get(self, doc_id: str) -> dict | None:
        return await self._db.reader().get(CATALOG, doc_id)

    async def set_batch(self, documents: dict[str, dict]) -> None:
        await self._db.fan_out("catalog.set_batch", lambda b: b.set_batch(CATALOG, documents))


async def connect_database(settings: Settings, secrets: SecretProvider) -> DualWriteDatabase:
    config = DatabaseConfig.from_settings(settings)

    mongodb = None
    if config.enable_mongodb or config.read_from == "mongodb":
        uri = await secrets.get_secret(MONGODB_URI)
        mongodb = MongoBackend.connect(uri, settings.mongodb_database)

    firestore = None
    if config.enable_firestore or config.read_from == "firestore":
        firestore = FirestoreBackend.connect(settings.gcp_project_id)

    logger.info(
        "Database connected",
        extra={
            "enable_mongodb": config.enable_mongodb,
            "enable_firestore": config.enable_firestore,
            "read_from": config.read_from,
        },
    )
    return DualWriteDatabase(config, mongodb=mongodb, firestore=firestore)


_database: DualWriteDatabase | None = None
_database_lock = asyncio.Lock()


async def get_database(settings: Settings, secrets: SecretProvider) -> DualWriteDatabase:
    """Process-wide database handle, connected on first use."""
    global _database
    if _database is not None:
        return _database
    async with _database_lock:
        if _database is None:
            _database = await connect_database(settings, secrets)
    return _database
