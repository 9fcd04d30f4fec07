"""Logging configuration for the background service."""

import logging
import logging.handlers
import re
from collections.abc import Mapping
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([kmg]?)b?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "k": 1024, "m": 1024 ** 2, "g": 1024 ** 3}

_LEVEL_ALIASES = {"verbose": "DEBUG", "silly": "DEBUG", "warn": "WARNING"}

# Handlers installed by configure_logging(), replaced on every call
_installed: list[logging.Handler] = []


def parse_size(value: str | int) -> int:
    """Parse ``"10m"`` / ``"512k"`` / ``"1g"`` / ``1048576`` into bytes."""
    if isinstance(value, int):
        return value
    match = _SIZE_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    return int(match.group(1)) * _SIZE_UNITS[match.group(2).lower()]


def parse_level(name: str) -> int:
    name = _LEVEL_ALIASES.get(str(name).lower(), str(name).upper())
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name!r}")
    return level


def configure_logging(logging_config: Mapping) -> None:
    """Install console and rotating file handlers on the root logger."""
    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()

    level = parse_level(logging_config.get("level", "info"))
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if logging_config.get("logToConsole", True):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        _installed.append(console)

    if logging_config.get("logToFile", True):
        log_dir = Path(logging_config.get("logDir", "./logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        max_bytes = parse_size(logging_config.get("maxSize", "10m"))
        backups = int(logging_config.get("maxFiles", 5))

        combined = logging.handlers.RotatingFileHandler(
            log_dir / "combined.log", maxBytes=max_bytes, backupCount=backups, encoding="utf-8",
        )
        combined.setFormatter(formatter)
        _installed.append(combined)

        errors = logging.handlers.RotatingFileHandler(
            log_dir / "error.log", maxBytes=max_bytes, backupCount=backups, encoding="utf-8",
        )
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        _installed.append(errors)

    for handler in _installed:
        root.addHandler(handler)
