from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ...logging_setup import configure_logging
from ...rules.loader import WebhookRules
from ..dependencies import (
    get_catalog_ttl,
    get_database_provider,
    get_poster_client,
    get_secrets,
    get_settings,
)
from ..responses import query_snapshot, to_response
from .pipeline import WebhookPipeline

app = FastAPI(title="Poster Bridge Webhook Service", version="0.1.0")
configure_logging(get_settings(), service="webhook")


@lru_cache(maxsize=1)
def get_rules() -> WebhookRules:
    return WebhookRules.load_from_dir(get_settings().rules_dir)


def get_pipeline() -> WebhookPipeline:
    return WebhookPipeline(
        secrets=get_secrets(),
        database=get_database_provider(),
        poster=get_poster_client(),
        rules=get_rules(),
        catalog_ttl=get_catalog_ttl(),
    )


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.api_route("/", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def webhook(request: Request, pipeline: WebhookPipeline = Depends(get_pipeline)) -> JSONResponse:
    result = await pipeline.handle(
        method=request.method,
        query=query_snapshot(request),
        body=await request.body(),
    )
    return to_response(result)
