"""HTTP route definitions for the service."""

from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    FormatUpdate,
    LatestReadingResponse,
    NotificationEntryModel,
    NotificationEvent,
    RunStatusModel,
    SeriesPointModel,
    SeriesResponse,
    StartRunRequest,
    WriteRequest,
)
from models.records import CharacteristicRef
from services.errors import AlreadyRunning, ConfigurationError, InvalidInput, TransportError
from services.notifications import NotificationRouter, build_default_router
from services.sampler import SamplingScheduler, build_default_scheduler, default_schedule
from services.writer import CharacteristicWriter
from transport.simulated import SimulatedPeripheral, build_default_peripheral

router = APIRouter()


def get_scheduler() -> SamplingScheduler:
    return build_default_scheduler()


def get_peripheral() -> SimulatedPeripheral:
    return build_default_peripheral()


def get_notification_router() -> NotificationRouter:
    return build_default_router()


@lru_cache
def _writer_for(ref: CharacteristicRef, peripheral: SimulatedPeripheral) -> CharacteristicWriter:
    return CharacteristicWriter(ref, peripheral.write)


@router.post(
    "/runs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=RunStatusModel,
    summary="Start a sampling run on a characteristic.",
)
async def start_run(
    request: StartRunRequest,
    scheduler: SamplingScheduler = Depends(get_scheduler),
    peripheral: SimulatedPeripheral = Depends(get_peripheral),
    notifications: NotificationRouter = Depends(get_notification_router),
) -> RunStatusModel:
    config = request.schedule.to_domain() if request.schedule else default_schedule()
    ref = request.characteristic.to_ref()
    try:
        run_status = await scheduler.start(
            config,
            request.coefficients.to_domain(),
            ref,
            peripheral.read,
        )
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except AlreadyRunning as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    notifications.subscribe(ref.characteristic_id)
    return RunStatusModel.from_domain(run_status)


@router.delete(
    "/runs",
    response_model=RunStatusModel,
    summary="Stop the active run and return its final status.",
)
async def stop_run(
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> RunStatusModel:
    return RunStatusModel.from_domain(await scheduler.stop())


@router.get(
    "/runs",
    response_model=RunStatusModel,
    summary="Current sampling status.",
)
async def run_status(
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> RunStatusModel:
    return RunStatusModel.from_domain(scheduler.status())


@router.get(
    "/series",
    response_model=SeriesResponse,
    summary="Averaged readings within a trailing window (0 = everything).",
)
async def series(
    hours: int = Query(0, description="Window size in hours: 0, 1, 6 or 24."),
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> SeriesResponse:
    try:
        points = scheduler.store.windowed(hours)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return SeriesResponse(
        hours=hours,
        points=[SeriesPointModel(timestamp=p.timestamp, value=p.value) for p in points],
    )


@router.get(
    "/readings/latest",
    response_model=LatestReadingResponse,
    summary="Most recent reading for live display.",
)
async def latest_reading(
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> LatestReadingResponse:
    latest = scheduler.store.latest
    if latest is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No readings available yet.",
        )
    return LatestReadingResponse(
        packet_index=latest.packet_index,
        average=latest.average,
        battery_level=latest.battery_level,
        captured_at=latest.captured_at,
    )


@router.get(
    "/notifications",
    response_model=list[NotificationEntryModel],
    summary="Most recent notifications, newest first.",
)
async def list_notifications(
    notifications: NotificationRouter = Depends(get_notification_router),
) -> list[NotificationEntryModel]:
    return [NotificationEntryModel.from_domain(entry) for entry in notifications.entries()]


@router.post(
    "/notifications",
    summary="Feed a notification event from the transport.",
)
async def push_notification(
    event: NotificationEvent,
    notifications: NotificationRouter = Depends(get_notification_router),
) -> dict[str, bool]:
    try:
        payload = bytes.fromhex(event.payload_hex)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="payload_hex is not valid hex.",
        ) from exc
    entry = notifications.route(event.characteristic_id, payload)
    return {"accepted": entry is not None}


@router.put(
    "/notifications/format",
    summary="Change the display format for notifications and writes.",
)
async def set_format(
    update: FormatUpdate,
    notifications: NotificationRouter = Depends(get_notification_router),
) -> dict[str, str]:
    notifications.format = update.format
    return {"format": update.format.value}


@router.post(
    "/writes",
    response_model=NotificationEntryModel,
    summary="Write text to the sampled characteristic.",
)
async def write_characteristic(
    request: WriteRequest,
    scheduler: SamplingScheduler = Depends(get_scheduler),
    peripheral: SimulatedPeripheral = Depends(get_peripheral),
    notifications: NotificationRouter = Depends(get_notification_router),
) -> NotificationEntryModel:
    ref = scheduler.status().ref
    if ref is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No characteristic selected; start a run first.",
        )
    writer = _writer_for(ref, peripheral)
    writer.format = notifications.format
    try:
        entry = await writer.write(request.text)
    except InvalidInput as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except TransportError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        ) from exc
    return NotificationEntryModel.from_domain(entry)


@router.get(
    "/writes",
    response_model=list[NotificationEntryModel],
    summary="Most recent writes, newest first.",
)
async def list_writes(
    scheduler: SamplingScheduler = Depends(get_scheduler),
    peripheral: SimulatedPeripheral = Depends(get_peripheral),
) -> list[NotificationEntryModel]:
    ref = scheduler.status().ref
    if ref is None:
        return []
    return [NotificationEntryModel.from_domain(e) for e in _writer_for(ref, peripheral).history()]


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
