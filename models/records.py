"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Tuple

PACKET_SIZE = 9
SAMPLES_PER_PACKET = 4


@dataclass(frozen=True, slots=True)
class CharacteristicRef:
    """Identifies the characteristic a run samples from."""

    peripheral_id: str
    service_id: str
    characteristic_id: str
    service_name: str = ""


@dataclass(frozen=True, slots=True)
class PacketFragment:
    """Fields carried by one 9-byte packet, before calibration."""

    packet_index: int
    battery_level: int
    samples: Tuple[int, int, int, int]


@dataclass(frozen=True, slots=True)
class Coefficients:
    """Cubic calibration polynomial ``c3*x^3 + c2*x^2 + c1*x + c0``."""

    c3: float
    c2: float
    c1: float
    c0: float

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.c3, self.c2, self.c1, self.c0)


@dataclass(frozen=True, slots=True)
class Reading:
    """A decoded and calibrated sensor packet."""

    packet_index: int
    battery_level: int
    samples: Tuple[int, ...]
    calibrated_values: Tuple[float, ...]
    average: float
    captured_at: datetime
    raw: bytes = b""


@dataclass(frozen=True, slots=True)
class SeriesPoint:
    timestamp: datetime
    value: float


@dataclass(frozen=True, slots=True)
class ScheduleConfig:
    """Timing of a sampling run, all values in milliseconds."""

    burst_interval_ms: int
    listen_duration_ms: int
    read_period_ms: int
