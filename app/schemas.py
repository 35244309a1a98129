"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IngestRequest(BaseModel):
    """A reading submitted by a device; the timestamp is assigned on arrival."""

    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(..., alias="deviceId", min_length=1, description="Reporting device.")
    level: float = Field(..., strict=True, allow_inf_nan=False, description="Measured value.")


class IngestResponse(BaseModel):
    """Acknowledgement returned once a reading has been accepted."""

    success: bool = True


class ReadingPoint(BaseModel):
    timestamp: int = Field(..., description="Milliseconds since the Unix epoch.")
    level: float


class LatestResponse(BaseModel):
    """Most recent reading for a device; both fields are omitted when nothing is known."""

    timestamp: Optional[int] = None
    level: Optional[float] = None


class FlushResponse(BaseModel):
    reading_count: int = Field(..., ge=0)
    device_count: int = Field(..., ge=0)
    bucket_count: int = Field(..., ge=0)
    attempts: int = Field(..., ge=0)
    dropped: int = Field(..., ge=0)
    skipped: bool = False


class RetentionResponse(BaseModel):
    cutoff_day: str = Field(..., description="Oldest day key kept by the sweep.")
    deleted: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    deleted_buckets: List[str] = Field(default_factory=list)
