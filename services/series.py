"""Ordered, deduplicated store of readings with time-windowed views."""

from __future__ import annotations

import bisect
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from models.records import Coefficients, Reading, SeriesPoint
from storage.log_sink import PREAMBLE_LINES, parse_row

logger = logging.getLogger(__name__)

WINDOW_HOURS = (0, 1, 6, 24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SeriesStore:
    """Readings keyed by packet index, kept in ascending index order.

    ``upsert`` is last-write-wins per index, so a packet read several times
    within a listen window leaves exactly one entry.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._by_index: Dict[int, Reading] = {}
        self._keys: List[int] = []
        self._latest: Optional[Reading] = None

    def upsert(self, reading: Reading) -> None:
        index = reading.packet_index
        if index not in self._by_index:
            bisect.insort(self._keys, index)
        self._by_index[index] = reading
        self._latest = reading

    def windowed(self, hours: int = 0, now: Optional[datetime] = None) -> List[SeriesPoint]:
        if hours not in WINDOW_HOURS:
            raise ValueError(
                f"hours must be one of {', '.join(str(h) for h in WINDOW_HOURS)}"
            )
        points = [
            SeriesPoint(timestamp=reading.captured_at, value=reading.average)
            for reading in self
        ]
        if hours == 0:
            return points

        end = now or self._clock()
        start = end - timedelta(hours=hours)
        return [point for point in points if start <= point.timestamp <= end]

    def clear(self) -> None:
        self._by_index.clear()
        self._keys.clear()
        self._latest = None

    def load_from_log(self, rows: Iterable[str], coefficients: Coefficients) -> int:
        """Rehydrate from persisted log rows; returns how many were loaded."""
        loaded = 0
        for row_number, row in enumerate(rows, start=PREAMBLE_LINES + 1):
            try:
                reading = parse_row(row, coefficients)
            except ValueError as exc:
                logger.warning(
                    "Skipping log row: %s",
                    exc,
                    extra={"row_number": row_number, "reason": str(exc)},
                )
                continue
            self.upsert(reading)
            loaded += 1
        return loaded

    @property
    def latest(self) -> Optional[Reading]:
        return self._latest

    def readings(self) -> List[Reading]:
        return list(self)

    def get(self, packet_index: int) -> Optional[Reading]:
        return self._by_index.get(packet_index)

    def __iter__(self) -> Iterator[Reading]:
        for key in self._keys:
            yield self._by_index[key]

    def __len__(self) -> int:
        return len(self._keys)
