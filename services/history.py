"""Assembly of recent history from durable buckets and not-yet-durable readings."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from datastore.codec import decode_history_entry, history_bucket_path, timestamp_key
from datastore.mock_realtime_db import MockRealtimeDatabase
from models.records import DataPoint
from services.buffer import IngestionBuffer
from services.clock import Clock, day_keys_between

logger = logging.getLogger(__name__)


class HistoryQueryAssembler:
    """Merge durable day buckets with buffered readings for one device and window."""

    def __init__(
        self,
        database: MockRealtimeDatabase,
        buffer: IngestionBuffer,
        clock: Clock,
    ) -> None:
        self.database = database
        self.buffer = buffer
        self.clock = clock

    def history(
        self,
        device_id: str,
        window_start: int,
        window_end: Optional[int] = None,
    ) -> List[DataPoint]:
        end = self.clock.peek_ms() if window_end is None else window_end
        if end < window_start:
            return []

        # Pending readings are captured before the durable read; a reading
        # flushed in between then shows up in both and is deduplicated below.
        pending = self.buffer.snapshot_for(device_id, since=window_start, until=end)
        durable = self._read_durable(device_id, window_start, end)

        merged: Dict[int, DataPoint] = {point.timestamp: point for point in durable}
        for point in pending:
            merged.setdefault(point.timestamp, point)
        return sorted(merged.values(), key=lambda point: point.timestamp)

    def _read_durable(self, device_id: str, window_start: int, window_end: int) -> List[DataPoint]:
        lower = timestamp_key(max(window_start, 0))
        upper = timestamp_key(max(window_end, 0))
        points: List[DataPoint] = []
        for bucket_day in day_keys_between(window_start, window_end, self.clock.offset_hours):
            children = self.database.read_range(
                history_bucket_path(device_id, bucket_day),
                start_at=lower,
                end_at=upper,
            )
            for key, value in children:
                try:
                    points.append(decode_history_entry(key, value))
                except ValueError as exc:
                    logger.warning(
                        "Skipping malformed history record: %s",
                        exc,
                        extra={"device_id": device_id, "day_key": bucket_day},
                    )
        return points
