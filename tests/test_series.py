"""Unit tests for the ordered, windowed reading store."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from models.records import Coefficients, Reading
from services.series import SeriesStore
from storage.log_sink import format_row

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
COEFFS = Coefficients(c3=1.0, c2=1.0, c1=1.0, c0=1.0)


def _reading(index: int, average: float, captured_at: datetime = NOW) -> Reading:
    """Helper to build deterministic readings."""

    return Reading(
        packet_index=index,
        battery_level=90,
        samples=(1, 2, 3, 4),
        calibrated_values=(average,) * 4,
        average=average,
        captured_at=captured_at,
        raw=bytes(9),
    )


def test_upsert_same_index_keeps_last_write() -> None:
    store = SeriesStore()
    first = _reading(3, 1.0)
    second = _reading(3, 2.0)

    store.upsert(first)
    store.upsert(second)

    assert len(store) == 1
    assert store.readings() == [second]
    assert store.get(3) is second


def test_iteration_is_ordered_by_packet_index() -> None:
    store = SeriesStore()
    for index in (9, 2, 5, 2, 11, 0, 5):
        store.upsert(_reading(index, float(index)))

    indexes = [reading.packet_index for reading in store]

    assert indexes == [0, 2, 5, 9, 11]


def test_latest_tracks_most_recent_upsert_not_highest_index() -> None:
    store = SeriesStore()
    store.upsert(_reading(10, 1.0))
    store.upsert(_reading(4, 2.0))

    assert store.latest is not None
    assert store.latest.packet_index == 4


def test_windowed_filters_by_trailing_hours() -> None:
    store = SeriesStore(clock=lambda: NOW)
    store.upsert(_reading(1, 1.0, NOW - timedelta(minutes=30)))
    store.upsert(_reading(2, 2.0, NOW - timedelta(hours=2)))
    store.upsert(_reading(3, 3.0, NOW - timedelta(hours=7)))
    store.upsert(_reading(4, 4.0, NOW - timedelta(hours=30)))

    assert [p.value for p in store.windowed(0)] == [1.0, 2.0, 3.0, 4.0]
    assert [p.value for p in store.windowed(1)] == [1.0]
    assert [p.value for p in store.windowed(6)] == [1.0, 2.0]
    assert [p.value for p in store.windowed(24)] == [1.0, 2.0, 3.0]


def test_windowed_is_recomputed_against_current_time() -> None:
    store = SeriesStore()
    store.upsert(_reading(1, 1.0, NOW - timedelta(minutes=50)))

    assert len(store.windowed(1, now=NOW)) == 1
    assert store.windowed(1, now=NOW + timedelta(minutes=20)) == []


def test_windowed_excludes_future_points() -> None:
    store = SeriesStore()
    store.upsert(_reading(1, 1.0, NOW + timedelta(minutes=1)))

    assert store.windowed(1, now=NOW) == []


@pytest.mark.parametrize("hours", [2, -1, 48])
def test_windowed_rejects_unsupported_hours(hours: int) -> None:
    with pytest.raises(ValueError):
        SeriesStore().windowed(hours)


def test_clear_empties_store() -> None:
    store = SeriesStore()
    store.upsert(_reading(1, 1.0))

    store.clear()

    assert len(store) == 0
    assert store.latest is None
    assert store.windowed(0) == []


def test_load_from_log_rehydrates_and_skips_bad_rows(caplog) -> None:
    store = SeriesStore()
    rows = [
        format_row(_reading(2, 20.0)).strip(),
        "not,a,valid,row",
        format_row(_reading(1, 10.0)).strip(),
    ]

    with caplog.at_level(logging.WARNING):
        loaded = store.load_from_log(rows, COEFFS)

    assert loaded == 2
    assert [r.packet_index for r in store] == [1, 2]
    assert [r.average for r in store] == [10.0, 20.0]
    assert any("Skipping log row" in record.getMessage() for record in caplog.records)
    assert any(getattr(record, "row_number", None) == 4 for record in caplog.records)
