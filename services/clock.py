"""Wall-clock access and calendar-day bucketing in a fixed-offset zone."""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta, timezone
from threading import Lock
from typing import Callable, List

_MS_PER_SECOND = 1000


def fixed_zone(offset_hours: float) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def day_key(timestamp_ms: int, offset_hours: float) -> str:
    """Return the ``YYYY-MM-DD`` day that ``timestamp_ms`` falls on in the offset zone."""
    instant = datetime.fromtimestamp(timestamp_ms / _MS_PER_SECOND, tz=fixed_zone(offset_hours))
    return instant.date().isoformat()


def day_keys_between(start_ms: int, end_ms: int, offset_hours: float) -> List[str]:
    """All day keys intersecting ``[start_ms, end_ms]``, oldest first."""
    if end_ms < start_ms:
        return []
    first = date.fromisoformat(day_key(start_ms, offset_hours))
    last = date.fromisoformat(day_key(end_ms, offset_hours))
    span = (last - first).days
    return [(first + timedelta(days=offset)).isoformat() for offset in range(span + 1)]


def retention_cutoff(now_ms: int, offset_hours: float, retention_days: int) -> str:
    """Oldest day key still inside the retention window."""
    today = date.fromisoformat(day_key(now_ms, offset_hours))
    return (today - timedelta(days=retention_days)).isoformat()


def seconds_until_next_midnight(now_ms: int, offset_hours: float) -> float:
    zone = fixed_zone(offset_hours)
    now = datetime.fromtimestamp(now_ms / _MS_PER_SECOND, tz=zone)
    midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=zone)
    return (midnight - now).total_seconds()


class Clock:
    """Source of ingest timestamps.

    ``now_ms`` never returns the same value twice: if the wall clock has not
    advanced (or has stepped backwards) since the previous call, the result is
    the previous value plus one millisecond.
    """

    def __init__(
        self,
        offset_hours: float = 0.0,
        time_source: Callable[[], float] = time.time,
    ) -> None:
        self.offset_hours = offset_hours
        self._time_source = time_source
        self._last_ms = -1
        self._lock = Lock()

    def wall_ms(self) -> int:
        return int(self._time_source() * _MS_PER_SECOND)

    def now_ms(self) -> int:
        with self._lock:
            candidate = max(self.wall_ms(), self._last_ms + 1)
            self._last_ms = candidate
            return candidate

    def peek_ms(self) -> int:
        """Current time for queries: never earlier than the last issued timestamp."""
        with self._lock:
            return max(self.wall_ms(), self._last_ms)

    def day_key(self, timestamp_ms: int) -> str:
        return day_key(timestamp_ms, self.offset_hours)

    def today(self) -> str:
        return self.day_key(self.wall_ms())
