"""Removal of day buckets that have aged out of the retention window."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from datastore.codec import HISTORY_ROOT, history_bucket_path, history_device_path
from datastore.errors import DurableStoreError
from datastore.mock_realtime_db import MockRealtimeDatabase
from services.clock import Clock, retention_cutoff

logger = logging.getLogger(__name__)


@dataclass
class RetentionReport:
    cutoff_day: str
    deleted: int = 0
    failed: int = 0
    deleted_buckets: List[str] = field(default_factory=list)


class RetentionManager:
    """Deletes every history bucket whose day is strictly older than the cutoff.

    The cutoff is ``today - retention_days`` in the clock's zone, so the
    current day's buckets, which flushes may still be writing, are never
    eligible.
    """

    def __init__(
        self,
        database: MockRealtimeDatabase,
        clock: Clock,
        retention_days: int = 7,
    ) -> None:
        if retention_days < 1:
            raise ValueError("retention_days must be at least 1.")
        self.database = database
        self.clock = clock
        self.retention_days = retention_days

    def cutoff_day(self, now_ms: Optional[int] = None) -> str:
        now = self.clock.wall_ms() if now_ms is None else now_ms
        return retention_cutoff(now, self.clock.offset_hours, self.retention_days)

    def sweep(self, now_ms: Optional[int] = None) -> RetentionReport:
        start_time = time.perf_counter()
        report = RetentionReport(cutoff_day=self.cutoff_day(now_ms))

        for device_id in self.database.child_keys(HISTORY_ROOT):
            for bucket_day in self.database.child_keys(history_device_path(device_id)):
                if not _is_day_key(bucket_day):
                    logger.warning(
                        "Skipping history bucket with unrecognised day key",
                        extra={"device_id": device_id, "day_key": bucket_day},
                    )
                    continue
                if bucket_day >= report.cutoff_day:
                    continue
                path = history_bucket_path(device_id, bucket_day)
                try:
                    self.database.delete(path)
                except DurableStoreError as exc:
                    report.failed += 1
                    logger.error(
                        "Failed to delete expired history bucket: %s",
                        exc,
                        extra={"device_id": device_id, "day_key": bucket_day, "path": path},
                    )
                    continue
                report.deleted += 1
                report.deleted_buckets.append(path)

        logger.info(
            "Retention sweep finished",
            extra={
                "cutoff_day": report.cutoff_day,
                "bucket_count": report.deleted,
                "duration_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return report


def _is_day_key(value: str) -> bool:
    try:
        return date.fromisoformat(value).isoformat() == value
    except ValueError:
        return False
