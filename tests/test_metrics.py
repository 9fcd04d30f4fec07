import json
from pathlib import Path

from jarvis.assistant.metrics import MetricsLogger


def test_flush_interval_is_coerced_to_one(tmp_path: Path) -> None:
    log_path = tmp_path / "nested" / "metrics.jsonl"
    logger = MetricsLogger({"enabled": True, "file": str(log_path), "flushInterval": 0})

    logger.log("wake_detected")

    assert log_path.exists()
    lines = log_path.read_text().strip().splitlines()
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["event"] == "wake_detected"
    assert "timestamp" in entry


def test_events_are_buffered_until_flush(tmp_path: Path) -> None:
    log_path = tmp_path / "metrics.jsonl"
    logger = MetricsLogger({"enabled": True, "file": str(log_path), "flushInterval": 10})

    logger.log("state_transition", old="IDLE", new="LISTENING")
    assert not log_path.exists()

    logger.flush()
    assert json.loads(log_path.read_text())["new"] == "LISTENING"


def test_disabled_logger_writes_nothing(tmp_path: Path) -> None:
    log_path = tmp_path / "metrics.jsonl"
    logger = MetricsLogger({"enabled": False, "file": str(log_path), "flushInterval": 1})

    logger.log("service_started")
    logger.flush()

    assert not log_path.exists()


def test_write_failure_does_not_raise(monkeypatch, tmp_path: Path) -> None:
    logger = MetricsLogger({"enabled": True, "file": str(tmp_path / "metrics.jsonl"), "flushInterval": 1})

    def _broken_open(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("builtins.open", _broken_open)

    logger.log("service_started")
    logger.flush()

    assert logger.write_error_count == 1


def test_serialization_failure_drops_event_without_crashing(tmp_path: Path) -> None:
    logger = MetricsLogger({"enabled": True, "file": str(tmp_path / "metrics.jsonl"), "flushInterval": 1})

    logger.log("pipeline_error", value=object())
    logger.flush()

    path = tmp_path / "metrics.jsonl"
    if path.exists():
        assert path.read_text().strip() == ""
