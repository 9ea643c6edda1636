"""Text renderings of characteristic payloads."""

from __future__ import annotations

import re
from enum import Enum

from services.errors import InvalidInput

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_DEC_RE = re.compile(r"^[0-9]+$")


class DisplayFormat(str, Enum):
    hex = "Hex"
    dec = "Dec"
    utf8 = "UTF-8"


def render(payload: bytes, fmt: DisplayFormat) -> str:
    if fmt is DisplayFormat.utf8:
        return bytes(payload).decode("utf-8", errors="replace")
    if fmt is DisplayFormat.dec:
        return ",".join(str(byte) for byte in payload)
    return bytes(payload).hex()


def parse_input(text: str, fmt: DisplayFormat) -> bytes:
    """Turn user-entered text into bytes for a write.

    Hex and decimal input are consumed two characters at a time, so
    ``"1234"`` in decimal is the two bytes ``12, 34``.
    """
    if fmt is DisplayFormat.utf8:
        return text.encode("utf-8")

    candidate = text.strip().lower()
    if fmt is DisplayFormat.dec:
        if not _DEC_RE.match(candidate):
            raise InvalidInput("Value entered is not in decimal format.")
        values = [int(candidate[i : i + 2], 10) for i in range(0, len(candidate), 2)]
        return bytes(values)

    if not _HEX_RE.match(candidate):
        raise InvalidInput("Value entered is not in hex format.")
    return bytes(int(candidate[i : i + 2], 16) for i in range(0, len(candidate), 2))
