from __future__ import annotations

import csv
import io
import logging
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import List, Optional, Protocol

from models.records import CharacteristicRef, Coefficients, PacketFragment, Reading
from services import codec, transform
from services.errors import PersistenceError
from settings import get_settings

logger = logging.getLogger(__name__)

HEADER_FIELDS = (
    "packetIndex",
    "batteryLevel",
    "reading1",
    "reading2",
    "reading3",
    "reading4",
    "avgReading",
    "time",
    "date",
    "data",
)
PREAMBLE_LINES = 2

_TIME_FORMAT = "%H:%M:%S"
_DATE_FORMAT = "%m/%d/%Y"


class FileSystem(Protocol):
    def exists(self, path: Path) -> bool: ...

    def mkdir(self, path: Path) -> None: ...

    def write_text(self, path: Path, text: str) -> None: ...

    def append_text(self, path: Path, text: str) -> None: ...

    def read_text(self, path: Path) -> str: ...


class LocalFileSystem:
    """``FileSystem`` backed by the local disk."""

    def exists(self, path: Path) -> bool:
        return path.exists()

    def mkdir(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def write_text(self, path: Path, text: str) -> None:
        with path.open("x", encoding="utf-8", newline="") as handle:
            handle.write(text)

    def append_text(self, path: Path, text: str) -> None:
        with path.open("a", encoding="utf-8", newline="") as handle:
            handle.write(text)

    def read_text(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")


def log_filename(peripheral_id: str, suffix: str) -> str:
    # Colons in MAC-style ids are not portable in file names.
    return f"{peripheral_id}_{suffix}.csv".replace(":", ".")


def _csv_line(fields: List[str]) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(fields)
    return buffer.getvalue()


def format_row(reading: Reading) -> str:
    local = reading.captured_at.astimezone()
    fields = [
        str(reading.packet_index),
        str(reading.battery_level),
        *(str(sample) for sample in reading.samples),
        repr(reading.average),
        local.strftime(_TIME_FORMAT),
        local.strftime(_DATE_FORMAT),
        reading.raw.hex(),
    ]
    return _csv_line(fields)


def parse_row(line: str, coefficients: Coefficients) -> Reading:
    """Rebuild a ``Reading`` from a persisted row; raises ``ValueError``."""
    rows = list(csv.reader([line]))
    if not rows or len(rows[0]) != len(HEADER_FIELDS):
        raise ValueError("unexpected column count")
    fields = [field.strip() for field in rows[0]]

    try:
        packet_index = int(fields[0])
        battery_level = int(fields[1])
        samples = tuple(int(value) for value in fields[2:6])
        average = float(fields[6])
    except ValueError as exc:
        raise ValueError("invalid numeric value") from exc

    try:
        naive = datetime.strptime(f"{fields[8]} {fields[7]}", f"{_DATE_FORMAT} {_TIME_FORMAT}")
    except ValueError as exc:
        raise ValueError("invalid timestamp") from exc
    captured_at = naive.astimezone().astimezone(timezone.utc)

    try:
        raw = bytes.fromhex(fields[9])
    except ValueError as exc:
        raise ValueError("invalid packet hex") from exc

    fragment = PacketFragment(
        packet_index=packet_index,
        battery_level=battery_level,
        samples=samples,  # type: ignore[arg-type]
    )
    try:
        codec.encode(fragment)
    except ValueError as exc:
        raise ValueError(f"field out of range: {exc}") from exc
    reading = transform.calibrate(fragment, coefficients, captured_at, raw)
    # The logged average is authoritative; coefficients may have changed since.
    return Reading(
        packet_index=reading.packet_index,
        battery_level=reading.battery_level,
        samples=reading.samples,
        calibrated_values=reading.calibrated_values,
        average=average,
        captured_at=reading.captured_at,
        raw=reading.raw,
    )


class PersistenceSink:
    """Append-only CSV log of processed readings."""

    def __init__(self, fs: Optional[FileSystem] = None) -> None:
        self.fs: FileSystem = fs or LocalFileSystem()
        self.path: Optional[Path] = None
        self._preamble: Optional[str] = None
        self._lock = Lock()

    def ensure_created(self, path: Path, ref: CharacteristicRef) -> bool:
        """Create the log with its preamble unless it already exists.

        Returns ``True`` when the file was created. An existing file is
        adopted as-is: it is never truncated or given a second header.
        """
        with self._lock:
            self.path = path
            self._preamble = _csv_line(
                [ref.peripheral_id, ref.service_id, ref.service_name]
            ) + _csv_line(list(HEADER_FIELDS))
            try:
                created = self._create_if_missing(path)
            except OSError as exc:
                raise PersistenceError(f"Could not create log {path}: {exc}") from exc

        if created:
            logger.info("Created reading log", extra={"path": str(path)})
        else:
            logger.info("Reusing existing reading log", extra={"path": str(path)})
        return created

    def append(self, reading: Reading) -> None:
        """Append one row, recreating the log and its preamble if it is gone."""
        line = format_row(reading)
        with self._lock:
            if self.path is None:
                raise PersistenceError("Reading log has not been created.")
            try:
                if self._create_if_missing(self.path):
                    logger.warning("Recreated missing reading log", extra={"path": str(self.path)})
                self.fs.append_text(self.path, line)
            except OSError as exc:
                raise PersistenceError(
                    f"Could not append to log {self.path}: {exc}"
                ) from exc

    def _create_if_missing(self, path: Path) -> bool:
        # Caller holds the lock. Rows are never written to a file without a preamble.
        if not self.fs.exists(path.parent):
            self.fs.mkdir(path.parent)
        if self.fs.exists(path):
            return False
        try:
            self.fs.write_text(path, self._preamble or "")
        except FileExistsError:
            return False
        return True

    def read_rows(self, path: Optional[Path] = None) -> List[str]:
        """Return the data rows of the log, skipping its two-line preamble."""
        target = path or self.path
        if target is None:
            return []
        with self._lock:
            try:
                if not self.fs.exists(target):
                    return []
                text = self.fs.read_text(target)
            except OSError as exc:
                raise PersistenceError(f"Could not read log {target}: {exc}") from exc
        lines = [line for line in text.splitlines() if line.strip()]
        return lines[PREAMBLE_LINES:]


def default_log_path(peripheral_id: str, directory: Optional[str] = None) -> Path:
    settings = get_settings()
    root = Path(directory or settings.log_dir)
    return root / log_filename(peripheral_id, settings.log_suffix)


@lru_cache
def build_default_sink() -> PersistenceSink:
    return PersistenceSink(fs=LocalFileSystem())
