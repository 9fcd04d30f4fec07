"""Placeholder synthesiser that returns a short silent buffer after a delay."""

import logging
import time
from collections.abc import Mapping

log = logging.getLogger(__name__)


class SimulatedTTS:
    def __init__(self, tts_config: Mapping, sample_rate: int = 16000):
        self._delay_s = tts_config.get("delayMs", 500) / 1000.0
        self._buffer_bytes = tts_config.get("bufferBytes", 1000)
        self._sample_rate = sample_rate

    def synthesize(self, text: str) -> tuple[bytes, int]:
        log.debug("Converting text to audio (simulated, %d chars)", len(text))
        time.sleep(self._delay_s)
        return bytes(self._buffer_bytes), self._sample_rate
