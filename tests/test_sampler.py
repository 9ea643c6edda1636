import asyncio
from pathlib import Path
from typing import List

import pytest

from models.records import (
    CharacteristicRef,
    Coefficients,
    PacketFragment,
    ScheduleConfig,
)
from services import codec
from services.errors import AlreadyRunning, ConfigurationError, TransportError
from services.sampler import (
    ReadingPipeline,
    SamplingScheduler,
    SchedulerState,
    burst_offsets,
    validate_schedule,
)
from services.series import SeriesStore
from storage.log_sink import LocalFileSystem, PersistenceSink

REF = CharacteristicRef(
    peripheral_id="AA:BB",
    service_id="180a",
    characteristic_id="2a19",
    service_name="Sensor",
)
COEFFS = Coefficients(c3=1.0, c2=1.0, c1=1.0, c0=1.0)
FAST = ScheduleConfig(burst_interval_ms=300, listen_duration_ms=100, read_period_ms=20)


def _packet(index: int) -> bytes:
    return codec.encode(
        PacketFragment(packet_index=index, battery_level=50, samples=(1, 2, 3, 4))
    )


def _scheduler(tmp_path: Path, fs=None) -> SamplingScheduler:
    return SamplingScheduler(
        store=SeriesStore(),
        sink=PersistenceSink(fs=fs),
        log_dir=str(tmp_path),
    )


def _log_rows(scheduler: SamplingScheduler) -> List[str]:
    return scheduler.sink.read_rows()


class CountingReader:
    def __init__(self) -> None:
        self.calls: List[float] = []
        self.origin = 0.0

    async def __call__(self, peripheral_id: str, service_id: str, characteristic_id: str) -> bytes:
        loop = asyncio.get_running_loop()
        self.calls.append(loop.time() - self.origin)
        return _packet(len(self.calls))


def test_burst_offsets_follow_read_period() -> None:
    config = ScheduleConfig(burst_interval_ms=2000, listen_duration_ms=500, read_period_ms=100)

    assert burst_offsets(config) == [0, 100, 200, 300, 400]


@pytest.mark.parametrize(
    "config",
    [
        ScheduleConfig(burst_interval_ms=1000, listen_duration_ms=500, read_period_ms=0),
        ScheduleConfig(burst_interval_ms=1000, listen_duration_ms=50, read_period_ms=100),
        ScheduleConfig(burst_interval_ms=400, listen_duration_ms=500, read_period_ms=100),
    ],
)
def test_invalid_schedules_are_rejected(config: ScheduleConfig) -> None:
    with pytest.raises(ConfigurationError):
        validate_schedule(config)


def test_zero_coefficient_refuses_start_before_any_read(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    reader = CountingReader()

    async def scenario() -> None:
        with pytest.raises(ConfigurationError):
            await scheduler.start(FAST, Coefficients(c3=0, c2=1, c1=1, c0=1), REF, reader)
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert reader.calls == []
    assert scheduler.state is SchedulerState.idle
    assert list(tmp_path.iterdir()) == []


def test_bursts_repeat_at_interval(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    reader = CountingReader()

    async def scenario() -> None:
        reader.origin = asyncio.get_running_loop().time()
        await scheduler.start(FAST, COEFFS, REF, reader)
        await asyncio.sleep(0.45)
        await scheduler.stop()

    asyncio.run(scenario())

    first_burst = [t for t in reader.calls if t < 0.2]
    second_burst = [t for t in reader.calls if t >= 0.2]
    assert len(first_burst) == 5
    assert first_burst == sorted(first_burst)
    assert second_burst
    assert 0.29 <= second_burst[0] < 0.45
    assert len(_log_rows(scheduler)) == len(reader.calls)


def test_readings_are_stored_and_persisted_in_order(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    reader = CountingReader()

    async def scenario():
        await scheduler.start(FAST, COEFFS, REF, reader)
        await asyncio.sleep(0.15)
        status = scheduler.status()
        await scheduler.stop()
        return status

    status = asyncio.run(scenario())

    assert status.state is SchedulerState.running
    assert status.counters.readings_stored == 5
    assert status.series_size == 5
    assert status.latest is not None
    assert status.latest.packet_index == 5
    assert status.latest.average == 36.0
    assert [row.split(",")[0] for row in _log_rows(scheduler)] == ["1", "2", "3", "4", "5"]
    assert status.log_path == tmp_path / "AA.BB_sensorlog.csv"


def test_duplicate_packet_indexes_are_deduplicated(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)

    async def same_packet(*_args) -> bytes:
        return _packet(42)

    async def scenario():
        await scheduler.start(FAST, COEFFS, REF, same_packet)
        await asyncio.sleep(0.15)
        size = len(scheduler.store)
        await scheduler.stop()
        return size

    assert asyncio.run(scenario()) == 1
    assert len(_log_rows(scheduler)) == 5


def test_second_start_raises_already_running(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    reader = CountingReader()

    async def scenario() -> None:
        await scheduler.start(FAST, COEFFS, REF, reader)
        try:
            with pytest.raises(AlreadyRunning):
                await scheduler.start(FAST, COEFFS, REF, reader)
        finally:
            await scheduler.stop()

    asyncio.run(scenario())


def test_transport_errors_do_not_stop_schedule(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    calls: List[int] = []

    async def flaky(*_args) -> bytes:
        calls.append(1)
        if len(calls) % 2:
            raise TransportError("link lost")
        return _packet(len(calls))

    async def scenario():
        await scheduler.start(FAST, COEFFS, REF, flaky)
        await asyncio.sleep(0.15)
        status = scheduler.status()
        await scheduler.stop()
        return status

    status = asyncio.run(scenario())

    assert len(calls) == 5
    assert status.counters.transport_errors == 3
    assert status.counters.readings_stored == 2
    assert status.recent_errors[0].kind == "transport"
    assert "link lost" in status.recent_errors[0].reason


def test_malformed_payload_is_dropped_but_whole_packets_kept(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    config = ScheduleConfig(burst_interval_ms=1000, listen_duration_ms=20, read_period_ms=20)

    async def ragged(*_args) -> bytes:
        return _packet(1) + b"\x01\x02\x03"

    async def scenario():
        await scheduler.start(config, COEFFS, REF, ragged)
        await asyncio.sleep(0.05)
        status = scheduler.status()
        await scheduler.stop()
        return status

    status = asyncio.run(scenario())

    assert status.counters.malformed_packets == 1
    assert status.counters.readings_stored == 1
    assert len(_log_rows(scheduler)) == 1


def test_persistence_failures_are_recorded_and_sampling_continues(tmp_path: Path) -> None:
    class FailingAppends(LocalFileSystem):
        def append_text(self, path, text):
            raise OSError("read-only file system")

    scheduler = _scheduler(tmp_path, fs=FailingAppends())
    reader = CountingReader()

    async def scenario():
        await scheduler.start(FAST, COEFFS, REF, reader)
        await asyncio.sleep(0.15)
        status = scheduler.status()
        await scheduler.stop()
        return status

    status = asyncio.run(scenario())

    assert len(reader.calls) == 5
    assert status.counters.persistence_errors == 5
    assert status.series_size == 5


def test_stop_discards_read_in_flight(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    config = ScheduleConfig(burst_interval_ms=1000, listen_duration_ms=100, read_period_ms=100)

    async def scenario():
        started = asyncio.Event()
        release = asyncio.Event()
        completed: List[bool] = []

        async def slow_read(*_args) -> bytes:
            started.set()
            await release.wait()
            completed.append(True)
            return _packet(1)

        await scheduler.start(config, COEFFS, REF, slow_read)
        await started.wait()
        summary = await scheduler.stop()
        release.set()
        await asyncio.sleep(0.02)
        return summary, completed

    summary, completed = asyncio.run(scenario())

    assert completed == [True]
    assert summary.state is SchedulerState.stopped
    assert summary.counters.reads_attempted == 1
    assert summary.counters.reads_discarded == 1
    assert scheduler.status().counters.reads_discarded == 0
    assert len(scheduler.store) == 0
    assert _log_rows(scheduler) == []


def test_stop_clears_store_and_restart_rehydrates_from_log(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    reader = CountingReader()

    async def never_returns(*_args) -> bytes:
        await asyncio.Event().wait()
        return b""

    async def scenario():
        await scheduler.start(FAST, COEFFS, REF, reader)
        await asyncio.sleep(0.15)
        summary = await scheduler.stop()
        size_after_stop = len(scheduler.store)
        await scheduler.start(FAST, COEFFS, REF, never_returns)
        size_after_restart = len(scheduler.store)
        await scheduler.stop()
        return summary, size_after_stop, size_after_restart

    summary, size_after_stop, size_after_restart = asyncio.run(scenario())

    assert summary.series_size == 5
    assert size_after_stop == 0
    assert size_after_restart == 5
    assert scheduler.state is SchedulerState.stopped
    assert scheduler.status().counters.readings_stored == 0


def test_pipeline_reports_empty_payload(tmp_path: Path) -> None:
    sink = PersistenceSink()
    sink.ensure_created(tmp_path / "log.csv", REF)
    pipeline = ReadingPipeline(SeriesStore(), sink)

    outcome = pipeline.process(b"", COEFFS)

    assert outcome.readings == []
    assert len(outcome.errors) == 1
    assert outcome.errors[0].kind == "malformed_packet"


def test_non_bytes_read_result_is_recorded_and_schedule_continues(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)
    calls: List[int] = []

    async def sloppy(*_args):
        calls.append(1)
        if len(calls) == 1:
            return None
        if len(calls) == 2:
            return "not bytes"
        return _packet(len(calls))

    async def scenario():
        await scheduler.start(FAST, COEFFS, REF, sloppy)
        await asyncio.sleep(0.15)
        status = scheduler.status()
        await scheduler.stop()
        return status

    status = asyncio.run(scenario())

    assert len(calls) == 5
    assert status.state is SchedulerState.running
    assert status.counters.transport_errors == 2
    assert status.counters.readings_stored == 3
    assert status.recent_errors[-1].kind == "transport"
    assert "NoneType" in status.recent_errors[-1].reason
    assert len(scheduler.store) == 0


def test_failed_log_creation_still_yields_headed_log_for_restart(tmp_path: Path) -> None:
    class FailsFirstCreate(LocalFileSystem):
        def __init__(self) -> None:
            self.create_failures = 1

        def write_text(self, path, text):
            if self.create_failures:
                self.create_failures -= 1
                raise OSError("permission denied")
            super().write_text(path, text)

    scheduler = _scheduler(tmp_path, fs=FailsFirstCreate())
    reader = CountingReader()

    async def never_returns(*_args) -> bytes:
        await asyncio.Event().wait()
        return b""

    async def scenario():
        first = await scheduler.start(FAST, COEFFS, REF, reader)
        await asyncio.sleep(0.15)
        await scheduler.stop()
        await scheduler.start(FAST, COEFFS, REF, never_returns)
        size_after_restart = len(scheduler.store)
        await scheduler.stop()
        return first, size_after_restart

    first, size_after_restart = asyncio.run(scenario())

    assert first.counters.persistence_errors == 1
    assert size_after_restart == 5
    lines = (tmp_path / "AA.BB_sensorlog.csv").read_text().splitlines()
    assert lines[0] == "AA:BB,180a,Sensor"
    assert lines[1].startswith("packetIndex")
    assert len(lines) == 7
