"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    FlushResponse,
    IngestRequest,
    IngestResponse,
    LatestResponse,
    ReadingPoint,
    RetentionResponse,
)
from datastore.errors import DurableStoreError
from services.telemetry import TelemetryService, build_default_service

router = APIRouter()


def get_service() -> TelemetryService:
    return build_default_service()


def _storage_unavailable(exc: DurableStoreError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Could not retrieve data: {exc}",
    )


# Plain ``def`` so a blocking threshold flush runs in the threadpool, not on the event loop.
@router.post(
    "/upload",
    response_model=IngestResponse,
    summary="Submit a reading from a device.",
)
def upload_reading(
    payload: IngestRequest,
    service: TelemetryService = Depends(get_service),
) -> IngestResponse:
    try:
        service.ingest(payload.device_id, payload.level)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return IngestResponse()


@router.get(
    "/latest/{device_id}",
    response_model=LatestResponse,
    response_model_exclude_none=True,
    summary="Most recent reading for a device, or an empty object.",
)
async def get_latest(
    device_id: str,
    service: TelemetryService = Depends(get_service),
) -> LatestResponse:
    try:
        point = service.latest(device_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DurableStoreError as exc:
        raise _storage_unavailable(exc) from exc
    if point is None:
        return LatestResponse()
    return LatestResponse(timestamp=point.timestamp, level=point.level)


@router.get(
    "/history/{device_id}",
    response_model=List[ReadingPoint],
    summary="Readings inside the lookback window, oldest first.",
)
async def get_history(
    device_id: str,
    days: Optional[int] = Query(
        default=None,
        ge=1,
        description="Lookback in days; defaults to the full retention window.",
    ),
    service: TelemetryService = Depends(get_service),
) -> List[ReadingPoint]:
    try:
        points = service.history(device_id, days=days)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DurableStoreError as exc:
        raise _storage_unavailable(exc) from exc
    return [ReadingPoint(timestamp=point.timestamp, level=point.level) for point in points]


@router.post(
    "/maintenance/flush",
    response_model=FlushResponse,
    summary="Flush buffered readings to the durable store now.",
)
def trigger_flush(service: TelemetryService = Depends(get_service)) -> FlushResponse:
    result = service.flush()
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Flush did not complete in time.",
        )
    if result.dropped:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Flush failed; {result.dropped} buffered readings were dropped.",
        )
    return FlushResponse(
        reading_count=result.reading_count,
        device_count=result.device_count,
        bucket_count=result.bucket_count,
        attempts=result.attempts,
        dropped=result.dropped,
        skipped=result.skipped,
    )


@router.post(
    "/maintenance/retention",
    response_model=RetentionResponse,
    summary="Delete history buckets older than the retention window.",
)
def trigger_retention(service: TelemetryService = Depends(get_service)) -> RetentionResponse:
    try:
        report = service.sweep_retention()
    except DurableStoreError as exc:
        raise _storage_unavailable(exc) from exc
    return RetentionResponse(
        cutoff_day=report.cutoff_day,
        deleted=report.deleted,
        failed=report.failed,
        deleted_buckets=list(report.deleted_buckets),
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(service: TelemetryService = Depends(get_service)) -> dict[str, object]:
    return {
        "status": "ok",
        "buffered": len(service.buffer),
        "flush_worker": service.flush_worker.running,
    }


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
