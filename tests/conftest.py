from __future__ import annotations

from typing import Iterator, List, Optional

import pytest
from fastapi.testclient import TestClient

from sensor_readings.app import create_app
from sensor_readings.database import ReadingStore
from sensor_readings.errors import PersistenceError
from sensor_readings.models import NewReading, StoredReading


class FailingStore:
    """Store double whose every operation fails like an unreachable database."""

    def __init__(self) -> None:
        self.attempts: List[NewReading] = []

    def insert(self, reading: NewReading) -> StoredReading:
        self.attempts.append(reading)
        raise PersistenceError("insert", "database is unreachable")

    def find_latest(self, device_id: str) -> Optional[StoredReading]:
        raise PersistenceError("find_latest", "database is unreachable")

    def ping(self) -> bool:
        return False


@pytest.fixture
def store() -> Iterator[ReadingStore]:
    reading_store = ReadingStore("sqlite://")
    reading_store.init_db()
    yield reading_store
    reading_store.dispose()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def client(store: ReadingStore) -> Iterator[TestClient]:
    with TestClient(create_app(store)) as test_client:
        yield test_client


@pytest.fixture
def failing_client(failing_store: FailingStore) -> Iterator[TestClient]:
    with TestClient(create_app(failing_store)) as test_client:  # type: ignore[arg-type]
        yield test_client
