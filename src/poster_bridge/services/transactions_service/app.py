from __future__ import annotations

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ...logging_setup import configure_logging
from ...secret_store import SecretProvider
from ..dependencies import DatabaseProvider, get_database_provider, get_secrets, get_settings
from ..responses import query_snapshot, to_response
from .handler import list_transactions

app = FastAPI(title="Poster Bridge Transactions Service", version="0.1.0")
configure_logging(get_settings(), service="transactions")


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.get("/")
async def get_all_transactions(
    request: Request,
    secrets: SecretProvider = Depends(get_secrets),
    database: DatabaseProvider = Depends(get_database_provider),
) -> JSONResponse:
    result = await list_transactions(query_snapshot(request), secrets=secrets, database=database)
    return to_response(result)
