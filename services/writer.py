from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, List

from models.records import CharacteristicRef
from services.errors import TransportError
from services.formats import DisplayFormat, parse_input, render
from services.notifications import HISTORY_SIZE, NotificationEntry

logger = logging.getLogger(__name__)

WriteFn = Callable[[str, str, str, bytes], Awaitable[None]]


class CharacteristicWriter:
    """Writes user text to a characteristic and remembers the last few writes."""

    def __init__(
        self,
        ref: CharacteristicRef,
        write_fn: WriteFn,
        fmt: DisplayFormat = DisplayFormat.dec,
    ) -> None:
        self.ref = ref
        self.format = fmt
        self._write_fn = write_fn
        self._history: Deque[NotificationEntry] = deque(maxlen=HISTORY_SIZE)

    async def write(self, text: str) -> NotificationEntry:
        data = parse_input(text, self.format)
        try:
            await self._write_fn(
                self.ref.peripheral_id,
                self.ref.service_id,
                self.ref.characteristic_id,
                data,
            )
        except TransportError:
            raise
        except Exception as exc:
            logger.warning(
                "Write failed: %s",
                exc,
                extra={"characteristic_id": self.ref.characteristic_id},
            )
            raise TransportError(str(exc)) from exc

        entry = NotificationEntry(
            data=render(data, self.format),
            received_at=datetime.now(timezone.utc),
        )
        self._history.appendleft(entry)
        return entry

    def history(self) -> List[NotificationEntry]:
        return list(self._history)
