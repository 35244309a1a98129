"""Composition root for ingestion, queries and background maintenance."""

from __future__ import annotations

import logging
import math
import time
from functools import lru_cache
from typing import Any, Callable, List, Optional

from datastore.codec import decode_latest, latest_path
from datastore.mock_realtime_db import MockRealtimeDatabase, build_default_database
from models.records import DataPoint, Reading, newest
from services.buffer import IngestionBuffer
from services.clock import Clock, seconds_until_next_midnight
from services.flush import FlushEngine, FlushResult
from services.history import HistoryQueryAssembler
from services.latest_cache import LatestValueCache
from services.retention import RetentionManager, RetentionReport
from services.scheduler import FlushWorker, RecurringTask
from settings import FlushMode, get_settings

logger = logging.getLogger(__name__)

_MS_PER_DAY = 24 * 60 * 60 * 1000
_RESERVED_ID_CHARACTERS = frozenset("/.#$[]")


class TelemetryService:
    """Owns the buffer and cache and wires them to the store and background tasks."""

    def __init__(
        self,
        database: MockRealtimeDatabase,
        clock: Clock,
        *,
        flush_threshold: int = 100,
        flush_interval_seconds: float = 30.0,
        flush_mode: FlushMode = FlushMode.blocking,
        flush_wait_timeout_seconds: float = 10.0,
        flush_max_retries: int = 3,
        flush_retry_backoff_seconds: float = 0.5,
        cache_max_entries: int = 1000,
        cache_ttl_seconds: float = 300.0,
        retention_days: int = 7,
        cache_time_source: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.database = database
        self.clock = clock
        self.flush_mode = flush_mode
        self.flush_wait_timeout_seconds = flush_wait_timeout_seconds
        self.retention_days = retention_days

        self.buffer = IngestionBuffer(flush_threshold=flush_threshold)
        self.cache = LatestValueCache(
            max_entries=cache_max_entries,
            ttl_seconds=cache_ttl_seconds,
            time_source=cache_time_source,
        )
        self.flush_engine = FlushEngine(
            buffer=self.buffer,
            database=database,
            cache=self.cache,
            clock=clock,
            max_retries=flush_max_retries,
            retry_backoff_seconds=flush_retry_backoff_seconds,
            sleep=sleep,
        )
        self.retention = RetentionManager(database=database, clock=clock, retention_days=retention_days)
        self.history_assembler = HistoryQueryAssembler(database=database, buffer=self.buffer, clock=clock)

        self.flush_worker = FlushWorker(self.flush_engine)
        self.flush_timer = RecurringTask(
            "flush-timer",
            action=lambda: self.flush_worker.request("timer"),
            next_delay=lambda: flush_interval_seconds,
        )
        self.retention_timer = RecurringTask(
            "retention-sweep",
            action=self.retention.sweep,
            next_delay=lambda: seconds_until_next_midnight(clock.wall_ms(), clock.offset_hours),
        )

    def start(self) -> None:
        self.flush_worker.start()
        self.flush_timer.start()
        self.retention_timer.start()

    def shutdown(self) -> None:
        """Stop background tasks, then make one best-effort flush of whatever is left."""
        self.flush_timer.stop()
        self.retention_timer.stop()
        self.flush_worker.stop()
        result = self.flush_engine.flush()
        if result.reading_count:
            logger.info(
                "Final flush on shutdown",
                extra={"reading_count": result.reading_count, "reason": "shutdown"},
            )

    def ingest(self, device_id: Any, level: Any) -> Reading:
        """Accept one reading, stamping it with the ingest clock."""
        reading = Reading(
            device_id=validate_device_id(device_id),
            timestamp=self.clock.now_ms(),
            level=validate_level(level),
        )
        threshold_reached = self.buffer.append(reading)
        self.cache.put_if_newer(reading.device_id, reading.to_point())
        if threshold_reached:
            self.flush_worker.request(
                "threshold",
                wait=self.flush_mode is FlushMode.blocking,
                timeout=self.flush_wait_timeout_seconds,
            )
        return reading

    def latest(self, device_id: Any) -> Optional[DataPoint]:
        device = validate_device_id(device_id)
        pending = self.buffer.latest_for(device)
        known = self.cache.get(device)
        if known is None:
            known = self._read_durable_latest(device)
            if known is not None:
                self.cache.put_if_newer(device, known)
        return newest(known, pending)

    def history(self, device_id: Any, days: Optional[int] = None) -> List[DataPoint]:
        """Readings for ``device_id`` over the last ``days`` days, oldest first."""
        lookback = self.retention_days if days is None else days
        if isinstance(lookback, bool) or not isinstance(lookback, int):
            raise ValueError("days must be an integer.")
        if not 1 <= lookback <= self.retention_days:
            raise ValueError(f"days must be between 1 and {self.retention_days}.")
        now = self.clock.peek_ms()
        return self.history_between(device_id, now - lookback * _MS_PER_DAY, now)

    def history_between(
        self,
        device_id: Any,
        window_start: int,
        window_end: Optional[int] = None,
    ) -> List[DataPoint]:
        return self.history_assembler.history(validate_device_id(device_id), window_start, window_end)

    def flush(self) -> Optional[FlushResult]:
        return self.flush_worker.request(
            "manual", wait=True, timeout=self.flush_wait_timeout_seconds
        )

    def sweep_retention(self) -> RetentionReport:
        return self.retention.sweep()

    def _read_durable_latest(self, device_id: str) -> Optional[DataPoint]:
        raw = self.database.read(latest_path(device_id))
        try:
            return decode_latest(raw)
        except ValueError as exc:
            logger.warning(
                "Ignoring malformed latest record: %s", exc, extra={"device_id": device_id}
            )
            return None


def validate_device_id(device_id: Any) -> str:
    if not isinstance(device_id, str) or not device_id.strip():
        raise ValueError("deviceId must be a non-empty string.")
    candidate = device_id.strip()
    if _RESERVED_ID_CHARACTERS.intersection(candidate):
        raise ValueError("deviceId must not contain any of / . # $ [ ].")
    return candidate


def validate_level(level: Any) -> float:
    if isinstance(level, bool) or not isinstance(level, (int, float)):
        raise ValueError("level must be a number.")
    value = float(level)
    if not math.isfinite(value):
        raise ValueError("level must be a finite number.")
    return value


@lru_cache
def build_default_service() -> TelemetryService:
    """Factory that wires the service from environment settings."""
    settings = get_settings()
    return TelemetryService(
        database=build_default_database(),
        clock=Clock(offset_hours=settings.utc_offset_hours),
        flush_threshold=settings.flush_threshold,
        flush_interval_seconds=settings.flush_interval_seconds,
        flush_mode=settings.flush_mode,
        flush_wait_timeout_seconds=settings.flush_wait_timeout_seconds,
        flush_max_retries=settings.flush_max_retries,
        flush_retry_backoff_seconds=settings.flush_retry_backoff_seconds,
        cache_max_entries=settings.cache_max_entries,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        retention_days=settings.retention_days,
    )
