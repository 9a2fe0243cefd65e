from __future__ import annotations

import hmac
from collections.abc import Mapping
from dataclasses import dataclass, field

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..secret_store import SecretProvider


@dataclass(frozen=True, slots=True)
class HandlerResult:
    status_code: int
    body: dict | list = field(default_factory=dict)


def first_value(value: object) -> str | None:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return None if value is None else str(value)


async def check_shared_secret(
    query: Mapping[str, object],
    param: str,
    secret_name: str,
    secrets: SecretProvider,
) -> bool:
    supplied = first_value(query.get(param))
    if not supplied:
        return False
    expected = await secrets.get_secret(secret_name)
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def query_snapshot(request: Request) -> dict[str, str | list[str]]:
    snapshot: dict[str, str | list[str]] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        snapshot[key] = values[0] if len(values) == 1 else values
    return snapshot


def to_response(result: HandlerResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=jsonable_encoder(result.body))
