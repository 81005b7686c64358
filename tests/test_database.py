"""Tests for the SQLAlchemy-backed reading store."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import inspect

from sensor_readings.database import ReadingStore
from sensor_readings.errors import PersistenceError
from sensor_readings.models import NewReading


def _reading(device_id: str = "sensor-01", temperature: float = 21.5, timestamp: int = 1_700_000_000_000) -> NewReading:
    return NewReading(device_id=device_id, temperature=temperature, timestamp=timestamp)


def test_insert_assigns_id_and_created_at(store: ReadingStore) -> None:
    stored = store.insert(_reading())

    assert stored.id > 0
    assert stored.device_id == "sensor-01"
    assert stored.temperature == 21.5
    assert stored.timestamp == 1_700_000_000_000
    assert stored.created_at is not None


def test_insert_then_find_latest_returns_submitted_values(store: ReadingStore) -> None:
    store.insert(_reading(temperature=19.25, timestamp=42))

    latest = store.find_latest("sensor-01")

    assert latest is not None
    assert latest.temperature == 19.25
    assert latest.timestamp == 42


def test_find_latest_without_readings_returns_none(store: ReadingStore) -> None:
    assert store.find_latest("never-seen") is None


@pytest.mark.parametrize("order", [(1000, 2000), (2000, 1000)])
def test_find_latest_uses_greatest_timestamp_not_insert_order(store: ReadingStore, order) -> None:
    for timestamp in order:
        store.insert(_reading(temperature=timestamp / 100, timestamp=timestamp))

    latest = store.find_latest("sensor-01")

    assert latest is not None
    assert latest.timestamp == 2000
    assert latest.temperature == 20.0


def test_equal_timestamps_resolve_to_last_inserted(store: ReadingStore) -> None:
    store.insert(_reading(temperature=1.0, timestamp=500))
    second = store.insert(_reading(temperature=2.0, timestamp=500))

    latest = store.find_latest("sensor-01")

    assert latest is not None
    assert latest.id == second.id


def test_readings_are_kept_as_a_log(store: ReadingStore) -> None:
    first = store.insert(_reading(timestamp=1))
    second = store.insert(_reading(timestamp=2))

    assert first.id != second.id


def test_concurrent_inserts_for_different_devices_do_not_interfere(tmp_path) -> None:
    # file-backed so every thread gets its own connection
    store = ReadingStore(f"sqlite:///{tmp_path / 'readings.db'}")
    store.init_db()
    devices = [f"device-{index}" for index in range(8)]

    def write_series(device_id: str) -> None:
        for step in range(10):
            store.insert(_reading(device_id=device_id, temperature=float(step), timestamp=step))

    try:
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(write_series, devices))

        for device_id in devices:
            latest = store.find_latest(device_id)
            assert latest is not None
            assert latest.device_id == device_id
            assert latest.timestamp == 9
            assert latest.temperature == 9.0
    finally:
        store.dispose()


def test_device_lookups_are_indexed(store: ReadingStore) -> None:
    indexes = inspect(store.engine).get_indexes("sensor_readings")
    indexed_columns = [tuple(index["column_names"]) for index in indexes]

    assert ("device_id",) in indexed_columns
    assert ("device_id", "timestamp") in indexed_columns


def test_store_errors_raise_persistence_error() -> None:
    # tables never created
    uninitialised = ReadingStore("sqlite://")
    try:
        with pytest.raises(PersistenceError) as excinfo:
            uninitialised.insert(_reading())
        assert excinfo.value.operation == "insert"

        with pytest.raises(PersistenceError):
            uninitialised.find_latest("sensor-01")
    finally:
        uninitialised.dispose()


def test_ping_reports_reachable_database(store: ReadingStore) -> None:
    assert store.ping() is True


def test_created_at_reads_back_as_utc(store: ReadingStore) -> None:
    store.insert(_reading())

    latest = store.find_latest("sensor-01")

    assert latest is not None
    assert latest.created_at.tzinfo is not None
    assert latest.created_at.utcoffset() == timedelta(0)


def test_store_failure_is_logged_once(caplog) -> None:
    uninitialised = ReadingStore("sqlite://")
    try:
        with caplog.at_level(logging.ERROR, logger="sensor_readings"):
            with pytest.raises(PersistenceError):
                uninitialised.insert(_reading())
    finally:
        uninitialised.dispose()

    errors = [record for record in caplog.records if record.levelno >= logging.ERROR]
    assert len(errors) == 1
