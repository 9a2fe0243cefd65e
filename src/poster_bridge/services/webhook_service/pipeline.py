"""
Webhook ingestion for Poster transaction events.

Order of work for one call: method check, shared-secret check, raw record
write, payload validation, optional enrichment and transaction upsert, raw
record status update. Unauthenticated calls are rejected before anything is
stored. Every authenticated call leaves exactly one raw record, which ends
either ``processed=true`` or with ``processing_error`` set.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from ...catalog import CACHE_TTL, CatalogCache
from ...logging_setup import get_logger
from ...models import CatalogItem, HookMetadata, WebhookEnvelope
from ...poster_client import PosterClient
from ...rules.loader import WebhookRules
from ...secret_store import POSTER_TOKEN, WEBHOOK_API_KEY, SecretProvider
from ...storage.database import DualWriteDatabase
from ...writeoffs import enrich_products, get_transaction_write_offs
from ..responses import HandlerResult, check_shared_secret

logger = get_logger(__name__)

API_KEY_PARAM = "api-key"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ParsedPayload:
    envelope: WebhookEnvelope


@dataclass(frozen=True, slots=True)
class InvalidPayload:
    reason: str


def parse_webhook_data(data: object) -> dict:
    """The envelope ``data`` field is a JSON string or an object."""
    if not data:
        return {}
    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Failed to parse webhook data string, keeping it raw")
            return {"raw_data_string": data}
        return parsed if isinstance(parsed, dict) else {"raw_data": parsed}
    if isinstance(data, dict):
        return data
    return {"raw_data": data}


def _decode_body(body: object) -> object:
    if isinstance(body, (bytes, bytearray)):
        body = bytes(body).decode("utf-8")
    if isinstance(body, str):
        return json.loads(body)
    return body


def parse_payload(body: object, rules: WebhookRules) -> ParsedPayload | InvalidPayload:
    if body is None or body == b"" or body == "":
        return InvalidPayload("Empty request body")
    try:
        payload = _decode_body(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return InvalidPayload("Invalid JSON payload")
    if not isinstance(payload, dict):
        return InvalidPayload("Payload must be a JSON object")

    action = payload.get("action")
    if not action:
        return InvalidPayload("Missing required field: action")
    if not isinstance(action, str) or not rules.is_allowed(action):
        allowed = ", ".join(a.value for a in rules.allowed_actions)
        return InvalidPayload(f"Invalid action: {action}. Allowed: {allowed}")

    object_id = payload.get("object_id")
    if object_id is None or object_id == "":
        return InvalidPayload("Missing required field: object_id")
    if isinstance(object_id, bool) or not str(object_id).isdigit():
        return InvalidPayload(f"Invalid object_id: {object_id!r} is not numeric")
    if int(str(object_id)) <= 0:
        return InvalidPayload(f"Invalid object_id: {object_id!r} must be positive")

    try:
        envelope = WebhookEnvelope.model_validate(
            {**payload, "object_id": int(str(object_id)), "data": parse_webhook_data(payload.get("data"))}
        )
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        return InvalidPayload(f"Invalid field(s): {fields}")
    return ParsedPayload(envelope)


def snapshot_body(body: object) -> dict:
    """Copy of the inbound body for the raw record, before any validation."""
    if isinstance(body, (bytes, bytearray)):
        body = bytes(body).decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return {"raw_body_string": body}
        body = parsed
    if isinstance(body, dict):
        return {k: v for k, v in json.loads(json.dumps(body, default=str)).items() if k != "_id"}
    if body is None:
        return {"raw_body_string": None}
    return {"raw_body": json.loads(json.dumps(body, default=str))}


def snapshot_query(query: Mapping[str, object]) -> dict:
    return {
        key: list(value) if isinstance(value, (list, tuple)) else value
        for key, value in query.items()
        if key != API_KEY_PARAM
    }


@dataclass(frozen=True, slots=True)
class WebhookPipeline:
    secrets: SecretProvider
    database: Callable[[], Awaitable[DualWriteDatabase]]
    poster: PosterClient
    rules: WebhookRules
    catalog_ttl: timedelta = CACHE_TTL

    async def handle(self, *, method: str, query: Mapping[str, object], body: object) -> HandlerResult:
        if method.upper() != "POST":
            logger.warning("Unsupported method", extra={"method": method})
            return HandlerResult(405, {"error": "Method not allowed"})

        try:
            return await self._handle_post(query, body)
        except Exception:
            logger.exception("Webhook processing failed")
            return HandlerResult(500, {"error": "Processing failed", "message": "Unexpected error"})

    async def _handle_post(self, query: Mapping[str, object], body: object) -> HandlerResult:
        logger.info("Webhook request received")

        if not await check_shared_secret(query, API_KEY_PARAM, WEBHOOK_API_KEY, self.secrets):
            logger.warning("Invalid or missing API key")
            return HandlerResult(401, {"error": "Unauthorized"})

        db = await self.database()
        received_at = _now()
        raw_document = {
            **snapshot_body(body),
            "metadata": HookMetadata(received_at=received_at, query_params=snapshot_query(query)).model_dump(),
        }

        try:
            raw_hook_id = await db.raw_hooks.insert_one(raw_document)
        except Exception:
            logger.exception("Failed to store raw webhook")
            return HandlerResult(500, {"error": "Processing failed", "message": "Unexpected error"})
        logger.info("Raw webhook stored", extra={"raw_hook_id": raw_hook_id})

        parsed = parse_payload(body, self.rules)
        if isinstance(parsed, InvalidPayload):
            logger.warning("Invalid webhook payload", extra={"raw_hook_id": raw_hook_id, "details": parsed.reason})
            await self._mark_error(db, raw_hook_id, parsed.reason)
            return HandlerResult(400, {"error": "Invalid payload", "details": parsed.reason})

        envelope = parsed.envelope
        logger.info(
            "Webhook validated",
            extra={
                "object": envelope.object,
                "object_id": envelope.object_id,
                "action": envelope.action.value,
                "account": envelope.account,
                "raw_hook_id": raw_hook_id,
            },
        )

        saved = False
        write_offs_count = None
        if self.rules.should_persist(envelope.action):
            try:
                saved, write_offs_count = await self._persist_transaction(db, envelope, raw_hook_id, received_at)
            except Exception as exc:
                logger.exception("Failed to persist transaction", extra={"object_id": envelope.object_id})
                await self._mark_error(db, raw_hook_id, str(exc) or type(exc).__name__)
                return HandlerResult(500, {"error": "Processing failed", "message": "Unexpected error"})
        else:
            logger.info(
                "Raw webhook saved, transaction not persisted",
                extra={"action": envelope.action.value, "object_id": envelope.object_id},
            )

        await self._mark_processed(db, raw_hook_id, saved)

        response = {
            "success": True,
            "object_id": envelope.object_id,
            "action": envelope.action.value,
            "saved_to_transactions": saved,
        }
        if write_offs_count is not None:
            response["write_offs_count"] = write_offs_count
        response["raw_hook_id"] = raw_hook_id

        logger.info("Webhook processing completed", extra=response)
        return HandlerResult(200, response)

    async def _persist_transaction(
        self,
        db: DualWriteDatabase,
        envelope: WebhookEnvelope,
        raw_hook_id: str,
        received_at: datetime,
    ) -> tuple[bool, int | None]:
        token = await self.secrets.get_secret(POSTER_TOKEN)
        transaction = await self.poster.fetch_transaction(token, envelope.object_id)
        if not transaction:
            logger.info("No transaction data from Poster, skipping save", extra={"object_id": envelope.object_id})
            return False, None

        # Key by what Poster returned, not by the inbound object_id.
        transaction_id = str(transaction["transaction_id"])
        record = {**transaction, "transaction_id": transaction_id}

        catalog = await self._load_catalog(db, token)
        products = record.get("products")
        if catalog and isinstance(products, list):
            record["products"] = enrich_products(products, catalog)

        write_offs_count = None
        if self.rules.enrich_write_offs:
            try:
                write_offs = await get_transaction_write_offs(self.poster, token, transaction_id, catalog)
            except Exception:
                logger.warning(
                    "Write-off enrichment failed, saving transaction without write-offs",
                    extra={"transaction_id": transaction_id},
                    exc_info=True,
                )
            else:
                record["write_offs"] = [wo.model_dump() for wo in write_offs]
                record["write_offs_synced_at"] = _now()
                write_offs_count = len(write_offs)

        record.update(
            {
                "poster_account": envelope.account,
                "poster_account_number": envelope.account_number,
                "poster_object": envelope.object,
                "poster_time": envelope.time,
                "poster_verify": envelope.verify,
                "webhook_received_at": received_at.isoformat(),
                "webhook_action": envelope.action.value,
                "raw_hook_id": raw_hook_id,
            }
        )

        await db.transactions.upsert(transaction_id, record)
        logger.info("Transaction saved", extra={"transaction_id": transaction_id})
        return True, write_offs_count

    async def _load_catalog(self, db: DualWriteDatabase, token: str) -> list[CatalogItem]:
        cache = CatalogCache(store=db.catalog, source=self.poster, secrets=self.secrets, ttl=self.catalog_ttl)
        try:
            return await cache.get_catalog(token)
        except Exception:
            logger.warning("Catalog unavailable, names will not be attached", exc_info=True)
            return []

    async def _mark_error(self, db: DualWriteDatabase, raw_hook_id: str, message: str) -> None:
        try:
            await db.raw_hooks.update_one(
                raw_hook_id,
                {"metadata": {"processing_error": message, "error_time": _now()}},
            )
        except Exception:
            logger.exception("Failed to record raw webhook error", extra={"raw_hook_id": raw_hook_id})

    async def _mark_processed(self, db: DualWriteDatabase, raw_hook_id: str, saved: bool) -> None:
        try:
            await db.raw_hooks.update_one(
                raw_hook_id,
                {
                    "metadata": {
                        "processed": True,
                        "processed_at": _now(),
                        "saved_to_transactions": saved,
                        "processing_error": None,
                        "error_time": None,
                    }
                },
            )
        except Exception:
            logger.exception("Failed to mark raw webhook as processed", extra={"raw_hook_id": raw_hook_id})
