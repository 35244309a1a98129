"""Bounded, expiring index from device to its most recent reading."""

from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Optional, Tuple

from models.records import DataPoint


class LatestValueCache:
    """LRU cache whose entries also expire a fixed time after they were written.

    The cache is an optimisation only; callers fall back to the durable store
    on a miss.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: float = 300.0,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1.")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._time_source = time_source
        self._entries: "OrderedDict[str, Tuple[DataPoint, float]]" = OrderedDict()
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)

    def get(self, device_id: str) -> Optional[DataPoint]:
        with self._lock:
            return self._live_entry(device_id, touch=True)

    def put(self, device_id: str, point: DataPoint) -> None:
        """Store ``point`` unconditionally."""
        with self._lock:
            self._store(device_id, point)

    def put_if_newer(self, device_id: str, point: DataPoint) -> bool:
        """Store ``point`` only if it is strictly newer than the cached entry."""
        with self._lock:
            current = self._live_entry(device_id, touch=False)
            if not point.is_newer_than(current):
                return False
            self._store(device_id, point)
            return True

    def invalidate(self, device_id: str) -> None:
        with self._lock:
            self._entries.pop(device_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _live_entry(self, device_id: str, touch: bool) -> Optional[DataPoint]:
        entry = self._entries.get(device_id)
        if entry is None:
            return None
        point, expires_at = entry
        if self._time_source() >= expires_at:
            del self._entries[device_id]
            return None
        if touch:
            self._entries.move_to_end(device_id)
        return point

    def _store(self, device_id: str, point: DataPoint) -> None:
        self._entries[device_id] = (point, self._time_source() + self.ttl_seconds)
        self._entries.move_to_end(device_id)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def _purge_expired(self) -> None:
        now = self._time_source()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
