"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.records import CharacteristicRef, Coefficients, Reading, ScheduleConfig
from services.formats import DisplayFormat
from services.notifications import NotificationEntry
from services.sampler import RunStatus, SchedulerState


class CharacteristicModel(BaseModel):
    """Identifies the peripheral characteristic to sample."""

    peripheral_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    characteristic_id: str = Field(..., min_length=1)
    service_name: str = ""

    def to_ref(self) -> CharacteristicRef:
        return CharacteristicRef(
            peripheral_id=self.peripheral_id,
            service_id=self.service_id,
            characteristic_id=self.characteristic_id,
            service_name=self.service_name,
        )


class CoefficientsModel(BaseModel):
    """Calibration polynomial; zero values are rejected when the run starts."""

    c3: float
    c2: float
    c1: float
    c0: float

    def to_domain(self) -> Coefficients:
        return Coefficients(c3=self.c3, c2=self.c2, c1=self.c1, c0=self.c0)


class ScheduleModel(BaseModel):
    burst_interval_ms: int = Field(..., ge=0)
    listen_duration_ms: int = Field(..., ge=0)
    read_period_ms: int = Field(..., ge=0)

    def to_domain(self) -> ScheduleConfig:
        return ScheduleConfig(
            burst_interval_ms=self.burst_interval_ms,
            listen_duration_ms=self.listen_duration_ms,
            read_period_ms=self.read_period_ms,
        )

    @classmethod
    def from_domain(cls, config: ScheduleConfig) -> "ScheduleModel":
        return cls(
            burst_interval_ms=config.burst_interval_ms,
            listen_duration_ms=config.listen_duration_ms,
            read_period_ms=config.read_period_ms,
        )


class StartRunRequest(BaseModel):
    characteristic: CharacteristicModel
    coefficients: CoefficientsModel
    schedule: Optional[ScheduleModel] = Field(
        default=None, description="Overrides the configured default schedule."
    )


class ReadingModel(BaseModel):
    packet_index: int = Field(..., ge=0)
    battery_level: int = Field(..., ge=0)
    samples: List[int]
    calibrated_values: List[float]
    average: float
    captured_at: datetime
    raw_hex: str

    @classmethod
    def from_domain(cls, reading: Reading) -> "ReadingModel":
        return cls(
            packet_index=reading.packet_index,
            battery_level=reading.battery_level,
            samples=list(reading.samples),
            calibrated_values=list(reading.calibrated_values),
            average=reading.average,
            captured_at=reading.captured_at,
            raw_hex=reading.raw.hex(),
        )


class RunCountersModel(BaseModel):
    bursts: int = 0
    reads_attempted: int = 0
    readings_stored: int = 0
    transport_errors: int = 0
    malformed_packets: int = 0
    persistence_errors: int = 0
    reads_discarded: int = 0


class RunErrorModel(BaseModel):
    kind: str
    reason: str
    occurred_at: datetime


class RunStatusModel(BaseModel):
    """Snapshot of the sampling run exposed via the API."""

    state: SchedulerState
    characteristic: Optional[CharacteristicModel] = None
    schedule: Optional[ScheduleModel] = None
    counters: RunCountersModel = Field(default_factory=RunCountersModel)
    recent_errors: List[RunErrorModel] = Field(default_factory=list)
    latest: Optional[ReadingModel] = None
    series_size: int = 0
    log_path: Optional[str] = None

    @classmethod
    def from_domain(cls, status: RunStatus) -> "RunStatusModel":
        ref = status.ref
        return cls(
            state=status.state,
            characteristic=(
                CharacteristicModel(
                    peripheral_id=ref.peripheral_id,
                    service_id=ref.service_id,
                    characteristic_id=ref.characteristic_id,
                    service_name=ref.service_name,
                )
                if ref
                else None
            ),
            schedule=ScheduleModel.from_domain(status.config) if status.config else None,
            counters=RunCountersModel(**vars(status.counters)),
            recent_errors=[
                RunErrorModel(kind=e.kind, reason=e.reason, occurred_at=e.occurred_at)
                for e in status.recent_errors
            ],
            latest=ReadingModel.from_domain(status.latest) if status.latest else None,
            series_size=status.series_size,
            log_path=str(status.log_path) if status.log_path else None,
        )


class SeriesPointModel(BaseModel):
    timestamp: datetime
    value: float


class SeriesResponse(BaseModel):
    hours: int
    points: List[SeriesPointModel] = Field(default_factory=list)


class LatestReadingResponse(BaseModel):
    packet_index: int
    average: float
    battery_level: int
    captured_at: datetime


class NotificationEntryModel(BaseModel):
    data: str
    received_at: datetime

    @classmethod
    def from_domain(cls, entry: NotificationEntry) -> "NotificationEntryModel":
        return cls(data=entry.data, received_at=entry.received_at)


class NotificationEvent(BaseModel):
    characteristic_id: str = Field(..., min_length=1)
    payload_hex: str = Field(..., description="Notification payload as hex.")


class FormatUpdate(BaseModel):
    format: DisplayFormat


class WriteRequest(BaseModel):
    text: str = Field(..., min_length=1)
