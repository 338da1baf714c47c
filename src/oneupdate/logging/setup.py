"""Logging setup helpers."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "oneupdate"
LOG_FILENAME = f"{LOGGER_NAME}.log"
LOG_FORMAT = "%(asctime)s %(process)08x %(thread)08x %(levelname).1s %(module)s %(message)s"
MAX_BYTES = 2 * 1024 * 1024
BACKUP_COUNT = 5


def configure_logging(
    log_path: Path | None = None,
    level: str = "INFO",
    mirror_to_console: bool = True,
    *,
    write_file: bool = True,
) -> logging.Logger:
    """Configure the `oneupdate` logger hierarchy.

    Every component logs through a child of this logger (see `get_logger`), so one call wires
    the rotating file and optional console output for the whole process. `write_file=False`
    keeps output on the console only, which the CLI uses for read-only commands.
    """

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    numeric_level = _normalize_level(level)
    logger.setLevel(numeric_level)
    formatter = logging.Formatter(LOG_FORMAT)

    if write_file:
        file_path = _resolve_log_path(log_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if mirror_to_console or not write_file:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(numeric_level)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    return logger


def get_logger(component: str | None = None) -> logging.Logger:
    """Return the root OneUpdate logger or a named child (`oneupdate.<component>`)."""

    if not component:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{component}")


def _normalize_level(level: str) -> int:
    """Convert log level strings to logging constants."""

    candidate = level.strip().upper()
    if candidate == "WARN":
        candidate = "WARNING"
    numeric = getattr(logging, candidate, None)
    if not isinstance(numeric, int):
        raise ValueError(f"Unsupported log level: {level!r}")
    return numeric


def _resolve_log_path(log_path: Path | None) -> Path:
    if log_path is None:
        return Path.cwd() / LOG_FILENAME

    candidate = log_path if log_path.is_absolute() else Path.cwd() / log_path
    if candidate.is_dir() or candidate.suffix == "":
        return candidate / LOG_FILENAME
    return candidate
