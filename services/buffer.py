"""Volatile holding area for readings that are not yet durable."""

from __future__ import annotations

from threading import Lock
from typing import List, Optional

from models.records import DataPoint, Reading


class IngestionBuffer:
    """Append-only queue of readings drained wholesale by the flush engine.

    A drained batch is held aside as *in flight* until the flush engine
    releases it, so that queries keep seeing those readings while the
    commit is outstanding. Moving entries from the queue to the in-flight
    batch happens under the same lock as every snapshot.
    """

    def __init__(self, flush_threshold: int = 100) -> None:
        if flush_threshold < 1:
            raise ValueError("flush_threshold must be at least 1.")
        self.flush_threshold = flush_threshold
        self._entries: List[Reading] = []
        self._in_flight: List[Reading] = []
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def append(self, reading: Reading) -> bool:
        """Queue ``reading``; returns True once the buffer has reached the flush threshold."""
        with self._lock:
            self._entries.append(reading)
            return len(self._entries) >= self.flush_threshold

    def drain_all(self) -> List[Reading]:
        """Atomically take every buffered reading, leaving the buffer empty."""
        with self._lock:
            if self._in_flight:
                raise RuntimeError("Previous drained batch has not been released.")
            drained = self._entries
            self._entries = []
            self._in_flight = drained
        return list(drained)

    def release(self) -> None:
        """Forget the in-flight batch once it is durable or has been given up on."""
        with self._lock:
            self._in_flight = []

    def snapshot_for(
        self,
        device_id: str,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> List[DataPoint]:
        """Points for ``device_id`` that are not yet durable: in-flight first, then queued."""
        with self._lock:
            entries = self._in_flight + self._entries
        return select_points(entries, device_id, since, until)

    def latest_for(self, device_id: str) -> Optional[DataPoint]:
        points = self.snapshot_for(device_id)
        if not points:
            return None
        return max(points, key=lambda point: point.timestamp)


def select_points(
    readings: List[Reading],
    device_id: str,
    since: Optional[int] = None,
    until: Optional[int] = None,
) -> List[DataPoint]:
    """Project ``readings`` for one device onto ``[since, until]`` in arrival order."""
    return [
        reading.to_point()
        for reading in readings
        if reading.device_id == device_id
        and (since is None or reading.timestamp >= since)
        and (until is None or reading.timestamp <= until)
    ]
