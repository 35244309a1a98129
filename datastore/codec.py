"""Storage layout and record encoding for the durable store.

This module is the only place that knows how telemetry is laid out in the
store and which field names stored records use::

    history/<device_id>/<day_key>/<timestamp> -> {"level": <float>}
    latest/<device_id>                        -> {"timestamp": <int>, "level": <float>}

History timestamps live in the child key, zero padded so that key order is
time order. Decoders also accept the shorthand field names written by older
revisions of the ingest service.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional

from models.records import DataPoint

HISTORY_ROOT = "history"
LATEST_ROOT = "latest"

_TIMESTAMP_WIDTH = 13
_LEVEL_FIELDS = ("level", "lv", "l", "value")
_TIMESTAMP_FIELDS = ("timestamp", "ts", "t")


def timestamp_key(timestamp: int) -> str:
    if timestamp < 0:
        raise ValueError(f"Timestamp must be non-negative, got {timestamp}.")
    return f"{timestamp:0{_TIMESTAMP_WIDTH}d}"


def history_device_path(device_id: str) -> str:
    return f"{HISTORY_ROOT}/{device_id}"


def history_bucket_path(device_id: str, day_key: str) -> str:
    return f"{HISTORY_ROOT}/{device_id}/{day_key}"


def history_entry_path(device_id: str, day_key: str, timestamp: int) -> str:
    return f"{history_bucket_path(device_id, day_key)}/{timestamp_key(timestamp)}"


def latest_path(device_id: str) -> str:
    return f"{LATEST_ROOT}/{device_id}"


def encode_history_value(point: DataPoint) -> dict[str, Any]:
    return {"level": point.level}


def encode_latest(point: DataPoint) -> dict[str, Any]:
    return {"timestamp": point.timestamp, "level": point.level}


def decode_history_entry(key: str, value: Any) -> DataPoint:
    """Decode one child of a day bucket; the key is the authoritative timestamp."""
    try:
        timestamp = int(key)
    except ValueError as exc:
        raise ValueError(f"History key {key!r} is not a timestamp.") from exc
    if isinstance(value, Mapping):
        level = _pick(value, _LEVEL_FIELDS)
    else:
        # Bare numbers were written before values became objects.
        level = value
    return DataPoint(timestamp=timestamp, level=_as_level(level))


def decode_latest(value: Any) -> Optional[DataPoint]:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ValueError("Latest record is not an object.")
    raw_timestamp = _pick(value, _TIMESTAMP_FIELDS)
    if isinstance(raw_timestamp, bool) or not isinstance(raw_timestamp, (int, float, str)):
        raise ValueError("Latest record has no usable timestamp.")
    try:
        timestamp = int(raw_timestamp)
    except ValueError as exc:
        raise ValueError("Latest record has no usable timestamp.") from exc
    return DataPoint(timestamp=timestamp, level=_as_level(_pick(value, _LEVEL_FIELDS)))


def _pick(record: Mapping[str, Any], fields: tuple[str, ...]) -> Any:
    for field in fields:
        if field in record:
            return record[field]
    return None


def _as_level(raw: Any) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueError(f"Stored level {raw!r} is not numeric.")
    level = float(raw)
    if not math.isfinite(level):
        raise ValueError(f"Stored level {raw!r} is not finite.")
    return level
