"""Tests for logging configuration."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from oneupdate.logging import configure_logging, get_logger


def _cleanup(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_configure_logging_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    logger = configure_logging()

    try:
        handler = next(h for h in logger.handlers if hasattr(h, "baseFilename"))
        log_path = Path(handler.baseFilename)
        assert log_path == tmp_path / "oneupdate.log"
        get_logger("dispatch").info("test message")
        assert "test message" in log_path.read_text(encoding="utf-8")
    finally:
        _cleanup(logger)


@pytest.mark.parametrize(
    "provided,expected",
    [
        (Path("custom.log"), "custom.log"),
        (Path("logs"), "logs/oneupdate.log"),
    ],
)
def test_configure_logging_with_override(tmp_path, monkeypatch, provided, expected):
    monkeypatch.chdir(tmp_path)
    logger = configure_logging(log_path=provided, level="debug")

    try:
        handler = next(h for h in logger.handlers if hasattr(h, "baseFilename"))
        log_path = Path(handler.baseFilename)
        assert log_path == tmp_path / expected
        assert logger.level == logging.DEBUG
    finally:
        _cleanup(logger)


def test_console_only_logging_writes_no_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    logger = configure_logging(level="warn", write_file=False)

    try:
        assert not any(hasattr(h, "baseFilename") for h in logger.handlers)
        assert logger.level == logging.WARNING
        assert not (tmp_path / "oneupdate.log").exists()
    finally:
        _cleanup(logger)


def test_reconfiguring_replaces_handlers(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    configure_logging(mirror_to_console=True)
    logger = configure_logging(mirror_to_console=False)

    try:
        assert len(logger.handlers) == 1
    finally:
        _cleanup(logger)


def test_invalid_level_rejected(tmp_path):
    with pytest.raises(ValueError):
        configure_logging(log_path=tmp_path / "x.log", level="chatty")


def test_component_loggers_share_the_file_and_level(tmp_path):
    logger = configure_logging(log_path=tmp_path, level="info", mirror_to_console=False)

    try:
        get_logger("fleet").debug("fleet debug detail")
        get_logger("brand.cache").info("snapshot rebuilt")
        text = (tmp_path / "oneupdate.log").read_text(encoding="utf-8")
        assert "snapshot rebuilt" in text
        assert "fleet debug detail" not in text
        assert get_logger().name == "oneupdate"
    finally:
        _cleanup(logger)
