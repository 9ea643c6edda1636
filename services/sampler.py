"""Timed acquisition: bursts of reads repeated at a fixed interval."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Awaitable, Callable, Deque, List, Optional

from models.records import CharacteristicRef, Coefficients, Reading, ScheduleConfig
from services import codec, transform
from services.errors import (
    AlreadyRunning,
    ConfigurationError,
    MalformedPacket,
    PersistenceError,
    PipelineError,
    TransportError,
)
from services.series import SeriesStore
from settings import get_settings
from storage.log_sink import PersistenceSink, build_default_sink, default_log_path

logger = logging.getLogger(__name__)

ReadFn = Callable[[str, str, str], Awaitable[bytes]]

RECENT_ERRORS = 20


class SchedulerState(str, Enum):
    idle = "idle"
    scheduling = "scheduling"
    running = "running"
    stopped = "stopped"


@dataclass
class RunCounters:
    bursts: int = 0
    reads_attempted: int = 0
    readings_stored: int = 0
    transport_errors: int = 0
    malformed_packets: int = 0
    persistence_errors: int = 0
    reads_discarded: int = 0


@dataclass(frozen=True)
class RunError:
    kind: str
    reason: str
    occurred_at: datetime


@dataclass
class RunStatus:
    state: SchedulerState
    ref: Optional[CharacteristicRef] = None
    config: Optional[ScheduleConfig] = None
    counters: RunCounters = field(default_factory=RunCounters)
    recent_errors: List[RunError] = field(default_factory=list)
    latest: Optional[Reading] = None
    series_size: int = 0
    log_path: Optional[Path] = None


@dataclass
class PipelineOutcome:
    readings: List[Reading] = field(default_factory=list)
    errors: List[PipelineError] = field(default_factory=list)


@dataclass(frozen=True)
class _Run:
    config: ScheduleConfig
    coefficients: Coefficients
    ref: CharacteristicRef
    read_fn: ReadFn
    log_path: Path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_late_read(future: "asyncio.Future[bytes]") -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.debug("Read in flight at stop failed: %s", future.exception())


def validate_schedule(config: ScheduleConfig) -> None:
    if config.read_period_ms <= 0:
        raise ConfigurationError("read_period_ms must be greater than zero.")
    if config.listen_duration_ms < config.read_period_ms:
        raise ConfigurationError("listen_duration_ms must be at least read_period_ms.")
    if config.burst_interval_ms < config.listen_duration_ms:
        raise ConfigurationError(
            "burst_interval_ms must be at least listen_duration_ms; bursts may not overlap."
        )


def burst_offsets(config: ScheduleConfig) -> List[int]:
    """Millisecond offsets, from the start of a burst, at which reads are issued."""
    return list(range(0, config.listen_duration_ms, config.read_period_ms))


def default_schedule() -> ScheduleConfig:
    settings = get_settings()
    return ScheduleConfig(
        burst_interval_ms=settings.burst_interval_ms,
        listen_duration_ms=settings.listen_duration_ms,
        read_period_ms=settings.read_period_ms,
    )


class ReadingPipeline:
    """decode -> calibrate -> store -> persist, for one read payload."""

    def __init__(
        self,
        store: SeriesStore,
        sink: PersistenceSink,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.sink = sink
        self._clock = clock

    def process(self, payload: bytes, coefficients: Coefficients) -> PipelineOutcome:
        outcome = PipelineOutcome()
        try:
            codec.check_payload(payload)
        except MalformedPacket as exc:
            outcome.errors.append(exc)

        packets, _remainder = codec.split_packets(payload)
        captured_at = self._clock()
        for packet in packets:
            fragment = codec.decode(packet)
            reading = transform.calibrate(fragment, coefficients, captured_at, packet)
            self.store.upsert(reading)
            outcome.readings.append(reading)
            try:
                self.sink.append(reading)
            except PersistenceError as exc:
                outcome.errors.append(exc)
        return outcome


class SamplingScheduler:
    """Runs bursts of reads and feeds results through a ``ReadingPipeline``.

    Only two handles are ever held: the schedule task (macro timer) and the
    current burst task (read timer). Both are cancelled by ``stop``.
    """

    def __init__(
        self,
        store: SeriesStore,
        sink: PersistenceSink,
        log_dir: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.sink = sink
        self.pipeline = ReadingPipeline(store, sink, clock=clock)
        self.state = SchedulerState.idle
        self._log_dir = log_dir
        self._clock = clock
        self._run: Optional[_Run] = None
        self._schedule_task: Optional[asyncio.Task[None]] = None
        self._burst_task: Optional[asyncio.Task[None]] = None
        self._counters = RunCounters()
        self._errors: Deque[RunError] = deque(maxlen=RECENT_ERRORS)

    @property
    def is_running(self) -> bool:
        return self.state in (SchedulerState.scheduling, SchedulerState.running)

    async def start(
        self,
        config: ScheduleConfig,
        coefficients: Coefficients,
        ref: CharacteristicRef,
        read_fn: ReadFn,
        log_path: Optional[Path] = None,
    ) -> RunStatus:
        if self.is_running:
            raise AlreadyRunning(
                f"A sampling run is already active for {ref.characteristic_id}."
            )
        validate_schedule(config)
        transform.validate_coefficients(coefficients)

        self.state = SchedulerState.scheduling
        self._counters = RunCounters()
        self._errors.clear()
        path = log_path or default_log_path(ref.peripheral_id, self._log_dir)
        run = _Run(
            config=config,
            coefficients=coefficients,
            ref=ref,
            read_fn=read_fn,
            log_path=path,
        )
        self._run = run

        rows: List[str] = []
        try:
            await asyncio.to_thread(self.sink.ensure_created, path, ref)
            rows = await asyncio.to_thread(self.sink.read_rows, path)
        except PersistenceError as exc:
            self._record(exc)

        if self.state is not SchedulerState.scheduling or self._run is not run:
            # Stopped while the log was being opened.
            return self.status()

        self.store.clear()
        loaded = self.store.load_from_log(rows, coefficients)

        self.state = SchedulerState.running
        self._schedule_task = asyncio.create_task(self._run_schedule(run))
        self._schedule_task.add_done_callback(self._on_schedule_done)

        logger.info(
            "Sampling started",
            extra={
                "characteristic_id": ref.characteristic_id,
                "path": str(path),
                "row_count": loaded,
            },
        )
        return self.status()

    async def stop(self) -> RunStatus:
        """Cancel all timers and return the final status of the run."""
        if not self.is_running:
            return self.status()

        self.state = SchedulerState.stopped
        tasks = [task for task in (self._burst_task, self._schedule_task) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._burst_task = None
        self._schedule_task = None

        summary = self.status()
        self.store.clear()
        self._counters = RunCounters()
        self._errors.clear()

        logger.info(
            "Sampling stopped",
            extra={
                "characteristic_id": summary.ref.characteristic_id if summary.ref else None,
                "row_count": summary.counters.readings_stored,
            },
        )
        return summary

    def status(self) -> RunStatus:
        run = self._run
        return RunStatus(
            state=self.state,
            ref=run.ref if run else None,
            config=run.config if run else None,
            counters=RunCounters(**vars(self._counters)),
            recent_errors=list(self._errors),
            latest=self.store.latest,
            series_size=len(self.store),
            log_path=run.log_path if run else None,
        )

    async def _run_schedule(self, run: _Run) -> None:
        loop = asyncio.get_running_loop()
        origin = loop.time()
        interval = run.config.burst_interval_ms / 1000
        burst = 0
        while self.state is SchedulerState.running:
            burst_start = origin + burst * interval
            await self._sleep_until(burst_start)
            self._burst_task = asyncio.create_task(self._run_burst(run, burst, burst_start))
            try:
                await self._burst_task
            finally:
                self._burst_task = None
            burst += 1

    async def _run_burst(self, run: _Run, burst: int, burst_start: float) -> None:
        loop = asyncio.get_running_loop()
        period = run.config.read_period_ms / 1000
        self._counters.bursts += 1
        logger.debug(
            "Burst started",
            extra={"characteristic_id": run.ref.characteristic_id, "burst": burst},
        )
        for offset_ms in burst_offsets(run.config):
            deadline = burst_start + offset_ms / 1000
            await self._sleep_until(deadline)
            if loop.time() >= deadline + period:
                # A slow read pushed us past this slot; continue with the next one.
                continue
            await self._read_once(run)

    async def _read_once(self, run: _Run) -> None:
        ref = run.ref
        self._counters.reads_attempted += 1
        try:
            pending = asyncio.ensure_future(
                run.read_fn(ref.peripheral_id, ref.service_id, ref.characteristic_id)
            )
        except Exception as exc:
            self._record(TransportError(str(exc) or type(exc).__name__))
            return

        try:
            payload = await asyncio.shield(pending)
        except asyncio.CancelledError:
            # The transport is allowed to finish; its result is dropped.
            self._counters.reads_discarded += 1
            pending.add_done_callback(_log_late_read)
            raise
        except Exception as exc:
            self._record(TransportError(str(exc) or type(exc).__name__))
            return

        if self.state is not SchedulerState.running or self._run is not run:
            self._counters.reads_discarded += 1
            return

        try:
            data = bytes(memoryview(payload))
        except TypeError as exc:
            self._record(
                TransportError(f"Read returned {type(payload).__name__}, not bytes: {exc}")
            )
            return

        outcome = self.pipeline.process(data, run.coefficients)
        self._counters.readings_stored += len(outcome.readings)
        for error in outcome.errors:
            self._record(error)
        for reading in outcome.readings:
            logger.debug(
                "Reading stored",
                extra={
                    "characteristic_id": ref.characteristic_id,
                    "packet_index": reading.packet_index,
                },
            )

    async def _sleep_until(self, deadline: float) -> None:
        delay = deadline - asyncio.get_running_loop().time()
        if delay > 0:
            await asyncio.sleep(delay)

    def _on_schedule_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sampling schedule crashed", exc_info=exc)
            self.state = SchedulerState.stopped

    def _record(self, error: PipelineError) -> None:
        if isinstance(error, TransportError):
            self._counters.transport_errors += 1
        elif isinstance(error, MalformedPacket):
            self._counters.malformed_packets += 1
        elif isinstance(error, PersistenceError):
            self._counters.persistence_errors += 1
        self._errors.appendleft(
            RunError(kind=error.kind, reason=str(error), occurred_at=self._clock())
        )
        logger.warning(
            "Sampling error: %s",
            error,
            extra={
                "characteristic_id": self._run.ref.characteristic_id if self._run else None,
                "reason": error.kind,
                "error_count": len(self._errors),
            },
        )


@lru_cache
def build_default_scheduler() -> SamplingScheduler:
    """Factory that wires the scheduler with the default store and log sink."""
    return SamplingScheduler(store=SeriesStore(), sink=build_default_sink())
