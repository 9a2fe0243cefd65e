from __future__ import annotations

import pytest

from fakes import FakeSecrets, InMemoryBackend
from poster_bridge.storage.database import DatabaseConfig, DualWriteDatabase


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def mongo() -> InMemoryBackend:
    return InMemoryBackend("mongodb")


@pytest.fixture
def firestore() -> InMemoryBackend:
    return InMemoryBackend("firestore")


@pytest.fixture
def db(mongo: InMemoryBackend, firestore: InMemoryBackend) -> DualWriteDatabase:
    return DualWriteDatabase(DatabaseConfig(), mongodb=mongo, firestore=firestore)


@pytest.fixture
def secrets() -> FakeSecrets:
    return FakeSecrets()
