"""Speech-to-text abstraction: protocol and factory."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable


@runtime_checkable
class SpeechToText(Protocol):
    """Any STT backend must implement this interface."""

    def transcribe(self, audio: bytes, sample_rate: int = 16000) -> str:
        """Convert int16 PCM *audio* to text. Returns ``""`` when nothing was said."""
        ...


def create_stt(stt_config: Mapping) -> SpeechToText:
    """Instantiate the engine named by ``stt_config["engine"]`` (default: simulated)."""
    engine = stt_config.get("engine", "simulated")

    if engine == "whisper":
        from jarvis.stt.whisper_stt import WhisperSTT

        return WhisperSTT(stt_config)

    if engine != "simulated":
        raise ValueError(f"Unknown STT engine: {engine!r}")

    from jarvis.stt.simulated import SimulatedSTT

    return SimulatedSTT(stt_config)
