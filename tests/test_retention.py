"""Unit tests for the retention sweep."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from datastore.errors import StoreWriteError
from datastore.mock_realtime_db import MockRealtimeDatabase
from services.clock import Clock
from services.retention import RetentionManager

NOW = datetime(2024, 3, 10, 12, tzinfo=timezone.utc)
TODAY = date(2024, 3, 10)


def _day(days_ago: int) -> str:
    return (TODAY - timedelta(days=days_ago)).isoformat()


def _manager(database: MockRealtimeDatabase, retention_days: int = 3) -> RetentionManager:
    clock = Clock(offset_hours=0, time_source=lambda: NOW.timestamp())
    return RetentionManager(database=database, clock=clock, retention_days=retention_days)


def _seed(database: MockRealtimeDatabase, device_id: str, *days_ago: int) -> None:
    database.batch_write(
        {f"history/{device_id}/{_day(offset)}/0000000000001": {"level": float(offset)} for offset in days_ago}
    )


def test_sweep_removes_bucket_outside_window_and_keeps_recent_one() -> None:
    db = MockRealtimeDatabase(name="test")
    _seed(db, "tank-1", 4, 1)

    report = _manager(db).sweep()

    assert report.cutoff_day == _day(3)
    assert report.deleted == 1
    assert report.deleted_buckets == [f"history/tank-1/{_day(4)}"]
    assert db.read(f"history/tank-1/{_day(4)}") is None
    assert db.read(f"history/tank-1/{_day(1)}") == {"0000000000001": {"level": 1.0}}


def test_sweep_keeps_cutoff_day_and_removes_everything_older() -> None:
    db = MockRealtimeDatabase(name="test")
    _seed(db, "tank-1", 0, 2, 3, 4, 10)
    _seed(db, "tank-2", 5, 3)
    db.batch_write({"latest/tank-1": {"timestamp": 1, "level": 1.0}})

    report = _manager(db).sweep()

    assert report.deleted == 3
    assert db.child_keys("history/tank-1") == [_day(3), _day(2), _day(0)]
    assert db.child_keys("history/tank-2") == [_day(3)]
    assert db.read("latest/tank-1") == {"timestamp": 1, "level": 1.0}


def test_second_sweep_has_nothing_to_delete() -> None:
    db = MockRealtimeDatabase(name="test")
    _seed(db, "tank-1", 8, 1)
    manager = _manager(db)

    manager.sweep()
    report = manager.sweep()

    assert report.deleted == 0
    assert db.child_keys("history/tank-1") == [_day(1)]


def test_cutoff_follows_explicit_now() -> None:
    db = MockRealtimeDatabase(name="test")
    _seed(db, "tank-1", 2)
    later = int((NOW + timedelta(days=2)).timestamp() * 1000)

    report = _manager(db).sweep(now_ms=later)

    assert report.deleted == 1
    assert db.read("history") is None


def test_failed_bucket_delete_is_logged_and_sweep_continues(caplog) -> None:
    failing_path = f"history/tank-1/{_day(5)}"

    class PartiallyFailingDatabase(MockRealtimeDatabase):
        def delete(self, path: str) -> bool:
            if path == failing_path:
                raise StoreWriteError("delete", path, "permission denied")
            return super().delete(path)

    db = PartiallyFailingDatabase(name="test")
    _seed(db, "tank-1", 5, 6)
    _seed(db, "tank-2", 7)

    with caplog.at_level(logging.ERROR, logger="services.retention"):
        report = _manager(db).sweep()

    assert report.failed == 1
    assert report.deleted == 2
    assert db.child_keys("history/tank-1") == [_day(5)]
    assert db.read("history/tank-2") is None
    assert any(getattr(record, "path", None) == failing_path for record in caplog.records)


def test_unrecognised_bucket_keys_are_left_alone() -> None:
    db = MockRealtimeDatabase(name="test")
    db.batch_write({"history/tank-1/legacy/1": {"level": 1.0}})
    _seed(db, "tank-1", 9)

    report = _manager(db).sweep()

    assert report.deleted == 1
    assert db.child_keys("history/tank-1") == ["legacy"]


def test_retention_days_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _manager(MockRealtimeDatabase(name="test"), retention_days=0)
