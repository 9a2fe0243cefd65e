from __future__ import annotations

import os
from typing import Protocol

from google.cloud import secretmanager

from .settings import Settings

POSTER_TOKEN = "poster-token"
MONGODB_URI = "mongodb-uri"
WEBHOOK_API_KEY = "poster-hook-api-key"
API_AUTH_KEY = "api-auth-key"


class SecretError(RuntimeError):
    pass


class SecretProvider(Protocol):
    async def get_secret(self, name: str) -> str: ...


class GcpSecretProvider:
    """Reads the latest version of a secret from Google Secret Manager.

    Only the client is kept for the lifetime of the process; secret values are
    fetched on every call.
    """

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        self._client: secretmanager.SecretManagerServiceAsyncClient | None = None

    def _ensure_client(self) -> secretmanager.SecretManagerServiceAsyncClient:
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceAsyncClient()
        return self._client

    async def get_secret(self, name: str) -> str:
        path = f"projects/{self.project_id}/secrets/{name}/versions/latest"
        response = await self._ensure_client().access_secret_version(request={"name": path})
        data = response.payload.data if response.payload else b""
        if not data:
            raise SecretError(f"Secret {name} is empty")
        return data.decode("utf-8")


class EnvSecretProvider:
    """Local development: secret ``poster-token`` is read from ``SECRET_POSTER_TOKEN``."""

    @staticmethod
    def env_name(name: str) -> str:
        return "SECRET_" + name.replace("-", "_").upper()

    async def get_secret(self, name: str) -> str:
        value = os.getenv(self.env_name(name))
        if not value:
            raise SecretError(f"Secret {name} is not set ({self.env_name(name)})")
        return value


_provider: SecretProvider | None = None


def get_secret_provider(settings: Settings) -> SecretProvider:
    global _provider
    if _provider is None:
        if settings.secret_backend == "env":
            _provider = EnvSecretProvider()
        else:
            _provider = GcpSecretProvider(settings.gcp_project_id)
    return _provider
