from __future__ import annotations

import math
import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional


_DB_NAME_ENV = "MOCK_RTDB_NAME"
_DB_PATH_ENV = "MOCK_RTDB_PERSISTENCE_PATH"
_FLUSH_THRESHOLD_ENV = "FLUSH_THRESHOLD"
_FLUSH_INTERVAL_ENV = "FLUSH_INTERVAL_SECONDS"
_FLUSH_MODE_ENV = "FLUSH_MODE"
_FLUSH_WAIT_TIMEOUT_ENV = "FLUSH_WAIT_TIMEOUT_SECONDS"
_FLUSH_RETRIES_ENV = "FLUSH_MAX_RETRIES"
_FLUSH_BACKOFF_ENV = "FLUSH_RETRY_BACKOFF_SECONDS"
_CACHE_SIZE_ENV = "LATEST_CACHE_MAX_ENTRIES"
_CACHE_TTL_ENV = "LATEST_CACHE_TTL_SECONDS"
_RETENTION_DAYS_ENV = "RETENTION_DAYS"
_UTC_OFFSET_ENV = "UTC_OFFSET_HOURS"
_LOG_LEVEL_ENV = "LOG_LEVEL"


class FlushMode(str, Enum):
    """How an ingest request relates to the flush it triggers."""

    blocking = "blocking"
    background = "background"


@dataclass(frozen=True)
class Settings:
    database_name: str
    database_persistence_path: Optional[str]
    flush_threshold: int
    flush_interval_seconds: float
    flush_mode: FlushMode
    flush_wait_timeout_seconds: float
    flush_max_retries: int
    flush_retry_backoff_seconds: float
    cache_max_entries: int
    cache_ttl_seconds: float
    retention_days: int
    utc_offset_hours: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_non_negative_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if not math.isfinite(parsed):
        return default
    return parsed if parsed > 0 else default


def _read_utc_offset(default: float) -> float:
    value = os.getenv(_UTC_OFFSET_ENV)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        return default
    # Real-world zone offsets span UTC-12 to UTC+14.
    if not math.isfinite(parsed) or not -12 <= parsed <= 14:
        return default
    return parsed


def _read_flush_mode(default: FlushMode) -> FlushMode:
    value = os.getenv(_FLUSH_MODE_ENV)
    if value is None:
        return default
    candidate = value.strip().lower()
    try:
        return FlushMode(candidate)
    except ValueError:
        return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_name=_read_str_env(_DB_NAME_ENV, "telemetry"),
        database_persistence_path=_read_optional_env(_DB_PATH_ENV, "./tmp/mock_rtdb.json"),
        flush_threshold=_read_positive_int(_FLUSH_THRESHOLD_ENV, 100),
        flush_interval_seconds=_read_positive_float(_FLUSH_INTERVAL_ENV, 30.0),
        flush_mode=_read_flush_mode(FlushMode.blocking),
        flush_wait_timeout_seconds=_read_positive_float(_FLUSH_WAIT_TIMEOUT_ENV, 10.0),
        flush_max_retries=_read_non_negative_int(_FLUSH_RETRIES_ENV, 3),
        flush_retry_backoff_seconds=_read_positive_float(_FLUSH_BACKOFF_ENV, 0.5),
        cache_max_entries=_read_positive_int(_CACHE_SIZE_ENV, 1000),
        cache_ttl_seconds=_read_positive_float(_CACHE_TTL_ENV, 300.0),
        retention_days=_read_positive_int(_RETENTION_DAYS_ENV, 7),
        utc_offset_hours=_read_utc_offset(8.0),
        log_level=_read_log_level("INFO"),
    )
