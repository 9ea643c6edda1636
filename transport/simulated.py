"""Stand-in peripheral used when no radio is attached."""

from __future__ import annotations

import asyncio
import logging
import random
from functools import lru_cache
from typing import AsyncIterator, List, Optional, Tuple

from models.records import PacketFragment
from services import codec
from services.errors import TransportError
from settings import get_settings

logger = logging.getLogger(__name__)


class SimulatedPeripheral:
    """Produces sequentially indexed packets with random battery and samples.

    ``failure_rate`` makes a fraction of reads raise ``TransportError`` so the
    scheduler's continue-on-error path can be exercised end to end.
    """

    def __init__(
        self,
        packets_per_read: int = 1,
        seed: Optional[int] = None,
        failure_rate: float = 0.0,
        latency: float = 0.0,
    ) -> None:
        if packets_per_read < 1:
            raise ValueError("packets_per_read must be at least 1.")
        self.packets_per_read = packets_per_read
        self.failure_rate = failure_rate
        self.latency = latency
        self._random = random.Random(seed)
        self._next_index = 0
        self.reads = 0
        self.writes: List[Tuple[str, bytes]] = []

    def next_packet(self) -> bytes:
        fragment = PacketFragment(
            packet_index=self._next_index & 0xFFFF,
            battery_level=self._random.randrange(100),
            samples=tuple(self._random.randrange(4096) for _ in range(4)),  # type: ignore[arg-type]
        )
        self._next_index += 1
        return codec.encode(fragment)

    async def read(self, peripheral_id: str, service_id: str, characteristic_id: str) -> bytes:
        self.reads += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.failure_rate and self._random.random() < self.failure_rate:
            raise TransportError(f"Simulated read failure on {characteristic_id}")
        return b"".join(self.next_packet() for _ in range(self.packets_per_read))

    async def write(
        self, peripheral_id: str, service_id: str, characteristic_id: str, data: bytes
    ) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        self.writes.append((characteristic_id, bytes(data)))
        logger.debug("Simulated write", extra={"characteristic_id": characteristic_id})

    async def notifications(
        self, characteristic_id: str, count: int, interval: float = 0.0
    ) -> AsyncIterator[Tuple[str, bytes]]:
        for _ in range(count):
            if interval:
                await asyncio.sleep(interval)
            yield characteristic_id, self.next_packet()


@lru_cache
def build_default_peripheral() -> SimulatedPeripheral:
    settings = get_settings()
    return SimulatedPeripheral(
        packets_per_read=settings.simulator_packets_per_read,
        seed=settings.simulator_seed,
    )
