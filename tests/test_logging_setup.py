import logging
from pathlib import Path

import pytest

from jarvis import logging_setup
from jarvis.logging_setup import configure_logging, parse_level, parse_size


def test_parse_size_units() -> None:
    assert parse_size("10m") == 10 * 1024 * 1024
    assert parse_size("512k") == 512 * 1024
    assert parse_size("1G") == 1024 ** 3
    assert parse_size("2048") == 2048
    assert parse_size(4096) == 4096


def test_parse_size_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_size("lots")


def test_parse_level_aliases() -> None:
    assert parse_level("info") == logging.INFO
    assert parse_level("verbose") == logging.DEBUG
    assert parse_level("warn") == logging.WARNING
    with pytest.raises(ValueError):
        parse_level("chatty")


def test_configure_logging_writes_combined_and_error_logs(tmp_path: Path) -> None:
    root = logging.getLogger()
    old_level = root.level
    try:
        configure_logging({
            "level": "info",
            "logToConsole": False,
            "logToFile": True,
            "logDir": str(tmp_path),
            "maxSize": "1m",
            "maxFiles": 2,
        })
        log = logging.getLogger("jarvis.test")
        log.info("hello combined")
        log.error("hello error")
        for handler in logging_setup._installed:
            handler.flush()

        combined = (tmp_path / "combined.log").read_text()
        errors = (tmp_path / "error.log").read_text()
        assert "hello combined" in combined
        assert "hello error" in combined
        assert "hello error" in errors
        assert "hello combined" not in errors
    finally:
        configure_logging({"logToConsole": False, "logToFile": False})
        root.setLevel(old_level)


def test_configure_logging_replaces_previous_handlers(tmp_path: Path) -> None:
    root = logging.getLogger()
    old_level = root.level
    try:
        configure_logging({"logToConsole": True, "logToFile": False})
        configure_logging({"logToConsole": True, "logToFile": False})

        assert len(logging_setup._installed) == 1
        assert sum(1 for h in root.handlers if h in logging_setup._installed) == 1
    finally:
        configure_logging({"logToConsole": False, "logToFile": False})
        root.setLevel(old_level)
