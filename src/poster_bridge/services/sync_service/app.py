from __future__ import annotations

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ...logging_setup import configure_logging
from ...poster_client import PosterClient
from ...secret_store import SecretProvider
from ...settings import Settings
from ..dependencies import DatabaseProvider, get_database_provider, get_poster_client, get_secrets, get_settings
from ..responses import query_snapshot, to_response
from .sync import handle_catalog_refresh, handle_sync

app = FastAPI(title="Poster Bridge Sync Service", version="0.1.0")
configure_logging(get_settings(), service="sync")


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.get("/")
async def sync_transactions(
    request: Request,
    secrets: SecretProvider = Depends(get_secrets),
    database: DatabaseProvider = Depends(get_database_provider),
    poster: PosterClient = Depends(get_poster_client),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    result = await handle_sync(
        query_snapshot(request),
        secrets=secrets,
        database=database,
        poster=poster,
        max_idle_pages=settings.sync_max_idle_pages,
        max_pages=settings.sync_max_pages,
    )
    return to_response(result)


@app.post("/catalog/refresh")
async def refresh_catalog(
    request: Request,
    secrets: SecretProvider = Depends(get_secrets),
    database: DatabaseProvider = Depends(get_database_provider),
    poster: PosterClient = Depends(get_poster_client),
) -> JSONResponse:
    result = await handle_catalog_refresh(query_snapshot(request), secrets=secrets, database=database, poster=poster)
    return to_response(result)
