from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from functools import lru_cache

from ..poster_client import PosterClient
from ..secret_store import SecretProvider, get_secret_provider
from ..settings import Settings
from ..storage.database import DualWriteDatabase, get_database

DatabaseProvider = Callable[[], Awaitable[DualWriteDatabase]]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.detect()


def get_secrets() -> SecretProvider:
    return get_secret_provider(get_settings())


def get_poster_client() -> PosterClient:
    settings = get_settings()
    return PosterClient(base_url=settings.poster_api_url, timeout_s=settings.poster_timeout_s)


def get_catalog_ttl() -> timedelta:
    return timedelta(hours=get_settings().catalog_ttl_hours)


def get_database_provider() -> DatabaseProvider:
    """The connection is opened lazily, after the caller is authenticated."""
    settings = get_settings()
    secrets = get_secrets()

    async def provide() -> DualWriteDatabase:
        return await get_database(settings, secrets)

    return provide
