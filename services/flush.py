"""Moves buffered readings into durable day buckets."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from datastore.codec import (
    encode_history_value,
    encode_latest,
    history_entry_path,
    latest_path,
)
from datastore.errors import DurableStoreError
from datastore.mock_realtime_db import MockRealtimeDatabase
from models.records import DataPoint, Reading
from services.buffer import IngestionBuffer
from services.clock import Clock
from services.latest_cache import LatestValueCache

logger = logging.getLogger(__name__)


@dataclass
class FlushResult:
    """Outcome of a single flush call."""

    reading_count: int = 0
    device_count: int = 0
    bucket_count: int = 0
    attempts: int = 0
    dropped: int = 0
    skipped: bool = False

    @property
    def committed(self) -> bool:
        return self.reading_count > 0 and self.dropped == 0


@dataclass
class _Batch:
    updates: Dict[str, Any]
    newest_by_device: Dict[str, DataPoint]
    bucket_count: int


class FlushEngine:
    """Drains the ingestion buffer and commits it to the store in one multi-path write.

    Only one flush runs at a time; a call made while another is in progress
    returns immediately with ``skipped`` set. A failed commit is retried with
    exponential backoff, and after ``max_retries`` retries the drained batch
    is dropped and reported at CRITICAL level.
    """

    def __init__(
        self,
        buffer: IngestionBuffer,
        database: MockRealtimeDatabase,
        cache: LatestValueCache,
        clock: Clock,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.buffer = buffer
        self.database = database
        self.cache = cache
        self.clock = clock
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep
        self._guard = Lock()

    @property
    def in_progress(self) -> bool:
        return self._guard.locked()

    def flush(self) -> FlushResult:
        if not self._guard.acquire(blocking=False):
            logger.debug("Flush already in progress; skipping request")
            return FlushResult(skipped=True)
        try:
            return self._flush_exclusive()
        finally:
            self._guard.release()

    def _flush_exclusive(self) -> FlushResult:
        start_time = time.perf_counter()
        readings = self.buffer.drain_all()
        if not readings:
            self.buffer.release()
            return FlushResult()

        try:
            batch = self._build_batch(readings)
            result = FlushResult(
                reading_count=len(readings),
                device_count=len(batch.newest_by_device),
                bucket_count=batch.bucket_count,
            )
            attempts = self._commit(batch, result)
            if attempts is None:
                result.attempts = self.max_retries + 1
                result.dropped = len(readings)
                return result
            result.attempts = attempts
            for device_id, point in batch.newest_by_device.items():
                self.cache.put_if_newer(device_id, point)
        finally:
            self.buffer.release()

        logger.info(
            "Flushed buffered readings",
            extra={
                "reading_count": result.reading_count,
                "device_count": result.device_count,
                "bucket_count": result.bucket_count,
                "attempt": result.attempts,
                "duration_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return result

    def _build_batch(self, readings: List[Reading]) -> _Batch:
        partitions: Dict[Tuple[str, str], List[Reading]] = defaultdict(list)
        newest_by_device: Dict[str, DataPoint] = {}
        for reading in readings:
            partitions[(reading.device_id, self.clock.day_key(reading.timestamp))].append(reading)
            point = reading.to_point()
            if point.is_newer_than(newest_by_device.get(reading.device_id)):
                newest_by_device[reading.device_id] = point

        updates: Dict[str, Any] = {}
        for (device_id, bucket_day), bucket in partitions.items():
            for reading in bucket:
                path = history_entry_path(device_id, bucket_day, reading.timestamp)
                updates[path] = encode_history_value(reading.to_point())
        for device_id, point in newest_by_device.items():
            updates[latest_path(device_id)] = encode_latest(point)

        return _Batch(
            updates=updates,
            newest_by_device=newest_by_device,
            bucket_count=len(partitions),
        )

    def _commit(self, batch: _Batch, result: FlushResult) -> Optional[int]:
        attempt = 0
        while True:
            attempt += 1
            try:
                self.database.batch_write(batch.updates)
                return attempt
            except DurableStoreError as exc:
                if attempt > self.max_retries:
                    logger.critical(
                        "Dropping buffered readings after repeated flush failures: %s",
                        exc,
                        extra={
                            "reading_count": result.reading_count,
                            "device_count": result.device_count,
                            "attempt": attempt,
                        },
                    )
                    return None
                delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Flush commit failed, retrying in %.2fs: %s",
                    delay,
                    exc,
                    extra={"reading_count": result.reading_count, "attempt": attempt},
                )
                self._sleep(delay)
