"""Text-to-speech abstraction: protocol and factory."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable


@runtime_checkable
class TextToSpeech(Protocol):
    """Any TTS backend must implement this interface."""

    def synthesize(self, text: str) -> tuple[bytes, int]:
        """Convert *text* to audio.

        Returns ``(pcm16_bytes, sample_rate)``; the PCM is interleaved for the
        configured channel count so it can go straight to ``AudioManager``.
        """
        ...


def create_tts(tts_config: Mapping, audio_config: Mapping) -> TextToSpeech:
    """Instantiate the engine named by ``tts_config["engine"]`` (default: simulated)."""
    engine = tts_config.get("engine", "simulated")

    if engine == "piper":
        from jarvis.tts.piper_tts import PiperTTS

        return PiperTTS(tts_config, channels=audio_config["channels"])

    if engine != "simulated":
        raise ValueError(f"Unknown TTS engine: {engine!r}")

    from jarvis.tts.simulated import SimulatedTTS

    return SimulatedTTS(tts_config, sample_rate=audio_config["sampleRate"])
