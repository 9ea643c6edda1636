"""Polynomial calibration of raw 12-bit samples."""

from __future__ import annotations

from datetime import datetime

from models.records import Coefficients, PacketFragment, Reading
from services.errors import ConfigurationError


def validate_coefficients(coeffs: Coefficients) -> None:
    # A zero coefficient means the user never filled it in.
    missing = [
        name
        for name, value in zip(("c3", "c2", "c1", "c0"), coeffs.as_tuple())
        if value == 0
    ]
    if missing:
        raise ConfigurationError(
            f"Coefficients must be non-zero: {', '.join(missing)}"
        )


def apply(sample: int, coeffs: Coefficients) -> float:
    return (
        coeffs.c3 * sample**3
        + coeffs.c2 * sample**2
        + coeffs.c1 * sample
        + coeffs.c0
    )


def calibrate(
    fragment: PacketFragment,
    coeffs: Coefficients,
    captured_at: datetime,
    raw: bytes = b"",
) -> Reading:
    """Build a ``Reading`` from a decoded fragment."""
    values = tuple(apply(sample, coeffs) for sample in fragment.samples)
    return Reading(
        packet_index=fragment.packet_index,
        battery_level=fragment.battery_level,
        samples=tuple(fragment.samples),
        calibrated_values=values,
        average=sum(values) / len(values),
        captured_at=captured_at,
        raw=raw,
    )
