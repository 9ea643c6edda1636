"""Binary codec for the 9-byte sensor packet.

Layout (big-endian)::

    bytes 0-1  packet index (u16)
    byte  2    battery level (u8)
    bytes 3-8  four 12-bit samples packed back to back

Each pair of samples occupies three bytes: ``AA AB BB``.
"""

from __future__ import annotations

import struct
from typing import List, Tuple

from models.records import PACKET_SIZE, SAMPLES_PER_PACKET, PacketFragment
from services.errors import MalformedPacket

_HEADER = struct.Struct(">HB6s")
_SAMPLE_MASK = 0xFFF

assert _HEADER.size == PACKET_SIZE


def _unpack_pair(chunk: bytes) -> Tuple[int, int]:
    first = ((chunk[0] << 4) | (chunk[1] >> 4)) & _SAMPLE_MASK
    second = (((chunk[1] & 0xF) << 8) | chunk[2]) & _SAMPLE_MASK
    return first, second


def _pack_pair(first: int, second: int) -> bytes:
    return bytes(
        (
            (first >> 4) & 0xFF,
            ((first & 0xF) << 4) | ((second >> 8) & 0xF),
            second & 0xFF,
        )
    )


def decode(packet: bytes) -> PacketFragment:
    """Decode one packet; raises ``MalformedPacket`` unless it is 9 bytes."""
    if len(packet) != PACKET_SIZE:
        raise MalformedPacket(
            f"Expected {PACKET_SIZE} bytes, got {len(packet)}."
        )
    packet_index, battery_level, body = _HEADER.unpack(bytes(packet))
    s0, s1 = _unpack_pair(body[0:3])
    s2, s3 = _unpack_pair(body[3:6])
    return PacketFragment(
        packet_index=packet_index,
        battery_level=battery_level,
        samples=(s0, s1, s2, s3),
    )


def encode(fragment: PacketFragment) -> bytes:
    """Inverse of :func:`decode`; rejects fields wider than their slots."""
    if not 0 <= fragment.packet_index <= 0xFFFF:
        raise ValueError(f"packet_index out of range: {fragment.packet_index}")
    if not 0 <= fragment.battery_level <= 0xFF:
        raise ValueError(f"battery_level out of range: {fragment.battery_level}")
    if len(fragment.samples) != SAMPLES_PER_PACKET:
        raise ValueError(
            f"Expected {SAMPLES_PER_PACKET} samples, got {len(fragment.samples)}."
        )
    for sample in fragment.samples:
        if not 0 <= sample <= _SAMPLE_MASK:
            raise ValueError(f"sample out of 12-bit range: {sample}")

    s0, s1, s2, s3 = fragment.samples
    body = _pack_pair(s0, s1) + _pack_pair(s2, s3)
    return _HEADER.pack(fragment.packet_index, fragment.battery_level, body)


def split_packets(payload: bytes) -> Tuple[List[bytes], bytes]:
    """Chunk a read payload into whole packets plus any trailing remainder."""
    whole = len(payload) - len(payload) % PACKET_SIZE
    packets = [
        bytes(payload[offset : offset + PACKET_SIZE])
        for offset in range(0, whole, PACKET_SIZE)
    ]
    return packets, bytes(payload[whole:])


def check_payload(payload: bytes) -> None:
    """Raise ``MalformedPacket`` for empty payloads or a partial trailing packet."""
    if not payload:
        raise MalformedPacket("Received empty payload.")
    remainder = len(payload) % PACKET_SIZE
    if remainder:
        raise MalformedPacket(
            f"Payload of {len(payload)} bytes ends with a partial packet "
            f"({remainder} trailing bytes)."
        )
