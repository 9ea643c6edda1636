from __future__ import annotations

import logging
import time
from logging.config import dictConfig
from typing import Iterable, Sequence

from settings import get_settings

_DEFAULT_EXTRA_KEYS = (
    "characteristic_id",
    "packet_index",
    "burst",
    "state",
    "path",
    "row_number",
    "reason",
    "error_count",
    "row_count",
)

# Noisy per-read chatter lives at DEBUG on this logger.
_SAMPLER_LOGGER = "services.sampler"

_configured = False


class ContextualFormatter(logging.Formatter):
    """Append known ``extra`` fields to each line as ``key=value`` pairs."""

    converter = time.gmtime

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _DEFAULT_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context_parts: list[str] = []
        for key in self._extra_keys:
            value = getattr(record, key, None)
            if value is None:
                continue
            context_parts.append(f"{key}={value}")
        if context_parts:
            return f"{message} | {' '.join(context_parts)}"
        return message


def configure_logging(
    level: str | int | None = None,
    sampler_level: str | int | None = None,
) -> None:
    """Configure application-wide logging with contextual formatting.

    ``sampler_level`` lets the scheduler be quieter (or louder) than the rest
    of the application; it falls back to ``SAMPLER_LOG_LEVEL`` and then to the
    global level.
    """
    global _configured
    if _configured:
        return

    settings = get_settings()
    log_level = level if level is not None else settings.log_level
    if sampler_level is None:
        sampler_level = settings.sampler_log_level or log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "style": "%",
                    "extra_keys": list(_DEFAULT_EXTRA_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "contextual",
                }
            },
            "loggers": {
                _SAMPLER_LOGGER: {
                    "level": sampler_level,
                },
            },
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True


def reset_logging() -> None:
    """Allow ``configure_logging`` to run again (used by tests)."""
    global _configured
    _configured = False
