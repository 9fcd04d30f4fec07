"""Placeholder recogniser that answers with a fixed phrase after a delay."""

import logging
import time
from collections.abc import Mapping

log = logging.getLogger(__name__)


class SimulatedSTT:
    def __init__(self, stt_config: Mapping):
        self._delay_s = stt_config.get("delayMs", 1000) / 1000.0
        self._text = stt_config.get("text", "what time is it")

    def transcribe(self, audio: bytes, sample_rate: int = 16000) -> str:
        log.debug("Converting audio to text (simulated, %d bytes)", len(audio))
        time.sleep(self._delay_s)
        return self._text
