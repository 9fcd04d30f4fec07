"""JSONL journal of service lifecycle and interaction events."""

import json
import logging
import os
import threading
import time
from collections.abc import Mapping
from pathlib import Path

log = logging.getLogger(__name__)

_WARN_INTERVAL_S = 30.0


def _jsonable(value):
    # numpy scalars and similar number-likes
    return float(value)


class MetricsLogger:
    """Buffers events and appends them to a JSONL file every ``flushInterval`` events.

    Callable from the event loop and from executor threads. Disk problems are
    counted and logged (rate-limited) but never raised to the caller.
    """

    def __init__(self, metrics_config: Mapping):
        self._path = Path(metrics_config.get("file", "logs/metrics.jsonl"))
        self._enabled = bool(metrics_config.get("enabled", True))
        try:
            self._flush_every = max(1, int(metrics_config.get("flushInterval", 10)))
        except (TypeError, ValueError):
            self._flush_every = 10

        self._pending: list[str] = []
        self._lock = threading.Lock()
        self._seq = 0
        self._pid = os.getpid()
        self._write_error_count = 0
        self._last_warning = None

        if self._enabled:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                self._enabled = False
                self._warn("metrics directory %s is not writable; metrics disabled", self._path.parent)

    @property
    def write_error_count(self) -> int:
        return self._write_error_count

    def log(self, event_type: str, **data) -> None:
        if not self._enabled:
            return

        with self._lock:
            self._seq += 1
            record = {"timestamp": time.time(), "event": event_type, "seq": self._seq, "pid": self._pid}
            record.update(data)
            try:
                line = json.dumps(record, default=_jsonable)
            except (TypeError, ValueError, OverflowError):
                self._warn("dropping unserialisable %s event", event_type)
                return
            self._pending.append(line)
            if len(self._pending) >= self._flush_every:
                self._write_pending()

    def flush(self) -> None:
        with self._lock:
            self._write_pending()

    def _write_pending(self) -> None:
        if not self._pending:
            return
        lines, self._pending = self._pending, []
        try:
            with open(self._path, "a", encoding="utf-8") as f:
                f.writelines(line + "\n" for line in lines)
        except (OSError, ValueError) as e:
            self._write_error_count += 1
            self._warn("metrics write to %s failed (%s); %d events lost", self._path, e, len(lines))

    def _warn(self, message: str, *args) -> None:
        now = time.monotonic()
        if self._last_warning is not None and now - self._last_warning < _WARN_INTERVAL_S:
            return
        self._last_warning = now
        log.warning(message, *args)
