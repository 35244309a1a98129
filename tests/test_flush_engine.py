"""Unit tests for the flush engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping

from datastore.errors import StoreWriteError
from datastore.mock_realtime_db import MockRealtimeDatabase
from models.records import DataPoint, Reading
from services.buffer import IngestionBuffer
from services.clock import Clock
from services.flush import FlushEngine
from services.latest_cache import LatestValueCache

DAY_ONE = int(datetime(2024, 3, 9, 12, tzinfo=timezone.utc).timestamp() * 1000)
DAY_TWO = int(datetime(2024, 3, 10, 12, tzinfo=timezone.utc).timestamp() * 1000)


class FlakyDatabase(MockRealtimeDatabase):
    """Fails the first ``failures`` batch writes."""

    def __init__(self, failures: int) -> None:
        super().__init__(name="flaky")
        self.failures = failures
        self.calls = 0

    def batch_write(self, updates: Mapping[str, Any]) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise StoreWriteError("batch_write", None, "store unavailable")
        super().batch_write(updates)


def _engine(database: MockRealtimeDatabase | None = None, max_retries: int = 3):
    buffer = IngestionBuffer(flush_threshold=100)
    cache = LatestValueCache()
    sleeps: List[float] = []
    engine = FlushEngine(
        buffer=buffer,
        database=database or MockRealtimeDatabase(name="test"),
        cache=cache,
        clock=Clock(offset_hours=0, time_source=lambda: DAY_TWO / 1000),
        max_retries=max_retries,
        retry_backoff_seconds=0.5,
        sleep=sleeps.append,
    )
    return engine, buffer, cache, sleeps


def test_flush_on_empty_buffer_is_a_no_op() -> None:
    engine, buffer, _, _ = _engine()

    first = engine.flush()
    second = engine.flush()

    assert first.reading_count == 0 and second.reading_count == 0
    assert first.committed is False
    assert engine.database.read("") is None
    assert buffer.in_flight_count == 0


def test_flush_partitions_by_device_and_day_and_updates_latest() -> None:
    engine, buffer, cache, _ = _engine()
    buffer.append(Reading("tank-a", DAY_ONE, 1.0))
    buffer.append(Reading("tank-a", DAY_TWO, 2.0))
    buffer.append(Reading("tank-a", DAY_TWO + 5, 2.5))
    buffer.append(Reading("tank-b", DAY_TWO + 1, 7.0))

    result = engine.flush()

    assert result.committed
    assert (result.reading_count, result.device_count, result.bucket_count) == (4, 2, 3)
    assert result.attempts == 1
    db = engine.database
    assert db.child_keys("history/tank-a") == ["2024-03-09", "2024-03-10"]
    assert db.read_range("history/tank-a/2024-03-10") == [
        (f"{DAY_TWO:013d}", {"level": 2.0}),
        (f"{DAY_TWO + 5:013d}", {"level": 2.5}),
    ]
    assert db.read("latest/tank-a") == {"timestamp": DAY_TWO + 5, "level": 2.5}
    assert db.read("latest/tank-b") == {"timestamp": DAY_TWO + 1, "level": 7.0}
    assert cache.get("tank-a") == DataPoint(DAY_TWO + 5, 2.5)
    assert cache.get("tank-b") == DataPoint(DAY_TWO + 1, 7.0)
    assert len(buffer) == 0
    assert buffer.in_flight_count == 0


def test_flush_keeps_newer_cache_entry() -> None:
    engine, buffer, cache, _ = _engine()
    cache.put("tank-a", DataPoint(DAY_TWO + 100, 9.0))
    buffer.append(Reading("tank-a", DAY_TWO, 1.0))

    engine.flush()

    assert cache.get("tank-a") == DataPoint(DAY_TWO + 100, 9.0)


def test_failed_commit_is_retried_with_backoff() -> None:
    engine, buffer, cache, sleeps = _engine(database=FlakyDatabase(failures=2))
    buffer.append(Reading("tank-a", DAY_TWO, 1.0))

    result = engine.flush()

    assert result.committed
    assert result.attempts == 3
    assert sleeps == [0.5, 1.0]
    assert engine.database.read("latest/tank-a") == {"timestamp": DAY_TWO, "level": 1.0}
    assert cache.get("tank-a") == DataPoint(DAY_TWO, 1.0)


def test_batch_is_dropped_after_retries_are_exhausted(caplog) -> None:
    engine, buffer, cache, sleeps = _engine(database=FlakyDatabase(failures=10), max_retries=2)
    buffer.append(Reading("tank-a", DAY_TWO, 1.0))
    buffer.append(Reading("tank-b", DAY_TWO + 1, 1.0))

    with caplog.at_level(logging.WARNING, logger="services.flush"):
        result = engine.flush()

    assert not result.committed
    assert result.dropped == 2
    assert result.attempts == 3
    assert sleeps == [0.5, 1.0]
    assert engine.database.read("") is None
    assert cache.get("tank-a") is None
    assert buffer.in_flight_count == 0
    assert any(record.levelno == logging.CRITICAL for record in caplog.records)


def test_readings_stay_visible_while_commit_is_in_flight() -> None:
    seen: List[List[DataPoint]] = []

    class ObservingDatabase(MockRealtimeDatabase):
        def batch_write(self, updates: Mapping[str, Any]) -> None:
            seen.append(buffer.snapshot_for("tank-a"))
            super().batch_write(updates)

    engine, buffer, _, _ = _engine(database=ObservingDatabase(name="observed"))
    buffer.append(Reading("tank-a", DAY_TWO, 4.0))

    engine.flush()

    assert seen == [[DataPoint(DAY_TWO, 4.0)]]
    assert buffer.snapshot_for("tank-a") == []


def test_concurrent_flush_is_skipped() -> None:
    engine, buffer, _, _ = _engine()
    buffer.append(Reading("tank-a", DAY_TWO, 1.0))

    engine._guard.acquire()
    try:
        assert engine.in_progress
        result = engine.flush()
    finally:
        engine._guard.release()

    assert result.skipped
    assert len(buffer) == 1
