"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class DataPoint:
    """A ``(timestamp, level)`` pair as stored in history and latest records."""

    timestamp: int
    level: float

    def is_newer_than(self, other: Optional[DataPoint]) -> bool:
        # Ties keep the existing entry.
        return other is None or self.timestamp > other.timestamp


@dataclass(frozen=True, slots=True)
class Reading:
    """A single device observation accepted at ingest."""

    device_id: str
    timestamp: int
    level: float

    def to_point(self) -> DataPoint:
        return DataPoint(timestamp=self.timestamp, level=self.level)


def newest(*points: Optional[DataPoint]) -> Optional[DataPoint]:
    """Return the point with the greatest timestamp, preferring earlier arguments on ties."""
    best: Optional[DataPoint] = None
    for point in points:
        if point is not None and point.is_newer_than(best):
            best = point
    return best
