from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_LOG_DIR_ENV = "SENSOR_LOG_DIR"
_LOG_SUFFIX_ENV = "SENSOR_LOG_SUFFIX"
_BURST_INTERVAL_ENV = "SAMPLING_BURST_INTERVAL_MS"
_LISTEN_DURATION_ENV = "SAMPLING_LISTEN_DURATION_MS"
_READ_PERIOD_ENV = "SAMPLING_READ_PERIOD_MS"
_PACKETS_PER_READ_ENV = "SIMULATOR_PACKETS_PER_READ"
_SIMULATOR_SEED_ENV = "SIMULATOR_SEED"
_LOG_LEVEL_ENV = "LOG_LEVEL"
_SAMPLER_LOG_LEVEL_ENV = "SAMPLER_LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    log_dir: str
    log_suffix: str
    burst_interval_ms: int
    listen_duration_ms: int
    read_period_ms: int
    simulator_packets_per_read: int
    simulator_seed: Optional[int]
    log_level: str
    sampler_log_level: Optional[str]


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


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


def _read_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return int(candidate)
    except ValueError:
        return None


def _read_log_level(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        log_dir=_read_str_env(_LOG_DIR_ENV, "./tmp/sensor_logs"),
        log_suffix=_read_str_env(_LOG_SUFFIX_ENV, "sensorlog"),
        burst_interval_ms=_read_positive_int(_BURST_INTERVAL_ENV, 6 * 60 * 1000),
        listen_duration_ms=_read_positive_int(_LISTEN_DURATION_ENV, 1000),
        read_period_ms=_read_positive_int(_READ_PERIOD_ENV, 100),
        simulator_packets_per_read=_read_positive_int(_PACKETS_PER_READ_ENV, 1),
        simulator_seed=_read_optional_int(_SIMULATOR_SEED_ENV),
        log_level=_read_log_level(_LOG_LEVEL_ENV, "INFO") or "INFO",
        sampler_log_level=_read_log_level(_SAMPLER_LOG_LEVEL_ENV, None),
    )
