from __future__ import annotations

import httpx


class HttpRequestError(RuntimeError):
    pass


class UpstreamStatusError(HttpRequestError):
    def __init__(self, resource: str, status_code: int) -> None:
        super().__init__(f"Failed to fetch {resource}: HTTP {status_code}")
        self.resource = resource
        self.status_code = status_code


class UpstreamTimeoutError(HttpRequestError):
    def __init__(self, resource: str) -> None:
        super().__init__(f"Request for {resource} timed out")
        self.resource = resource


async def get_json(
    url: str,
    params: dict,
    *,
    resource: str,
    timeout_s: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
        try:
            resp = await client.get(url, params=params, headers={"Accept": "application/json"})
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(resource) from exc
        except httpx.HTTPError as exc:
            raise HttpRequestError(f"Request for {resource} failed: {exc}") from exc

    if resp.status_code < 200 or resp.status_code >= 300:
        raise UpstreamStatusError(resource, resp.status_code)

    try:
        data = resp.json() if resp.content else {}
    except ValueError as exc:
        raise HttpRequestError(f"Invalid JSON in {resource} response") from exc
    if not isinstance(data, dict):
        raise HttpRequestError(f"Unexpected {resource} response shape: {type(data).__name__}")
    return data
