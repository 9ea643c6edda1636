"""Fold characteristic notifications into a short recent-history buffer."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import AsyncIterable, Callable, Deque, List, Optional, Tuple

from services.formats import DisplayFormat, render

logger = logging.getLogger(__name__)

HISTORY_SIZE = 5


@dataclass(frozen=True, slots=True)
class NotificationEntry:
    data: str
    received_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationRouter:
    """Keeps the most recent notifications for one subscribed characteristic.

    Matching is a case-insensitive substring test, so a full 128-bit UUID
    from the transport matches a short id the user subscribed with.
    """

    def __init__(
        self,
        characteristic_id: str,
        fmt: DisplayFormat = DisplayFormat.dec,
        capacity: int = HISTORY_SIZE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.characteristic_id = characteristic_id
        self.format = fmt
        self._clock = clock
        self._entries: Deque[NotificationEntry] = deque(maxlen=capacity)

    def subscribe(self, characteristic_id: str) -> None:
        """Follow a different characteristic; history of the old one is dropped."""
        if characteristic_id.lower() != self.characteristic_id.lower():
            self._entries.clear()
        self.characteristic_id = characteristic_id

    def matches(self, characteristic_id: str) -> bool:
        if not self.characteristic_id:
            return False
        return self.characteristic_id.lower() in characteristic_id.lower()

    def route(self, characteristic_id: str, payload: bytes) -> Optional[NotificationEntry]:
        if not self.matches(characteristic_id):
            return None
        entry = NotificationEntry(data=render(payload, self.format), received_at=self._clock())
        self._entries.appendleft(entry)
        logger.debug(
            "Notification received",
            extra={"characteristic_id": characteristic_id},
        )
        return entry

    async def consume(self, stream: AsyncIterable[Tuple[str, bytes]]) -> int:
        """Route every event of ``stream``; returns how many were kept."""
        kept = 0
        async for characteristic_id, payload in stream:
            if self.route(characteristic_id, payload) is not None:
                kept += 1
        return kept

    def entries(self) -> List[NotificationEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


@lru_cache
def build_default_router() -> NotificationRouter:
    # Not subscribed until a run names its characteristic.
    return NotificationRouter(characteristic_id="")
