"""Speech-to-text using faster-whisper."""

import logging
import time
from collections.abc import Mapping

import numpy as np
from faster_whisper import WhisperModel

log = logging.getLogger(__name__)


class WhisperSTT:
    """Loads a Whisper model once and transcribes int16 PCM buffers."""

    def __init__(self, stt_config: Mapping):
        self._model = WhisperModel(
            stt_config.get("modelSize", "base.en"),
            device=stt_config.get("device", "cpu"),
            compute_type=stt_config.get("computeType", "int8"),
        )
        language = stt_config.get("language")
        self._language = language.split("-")[0] if language else None
        self._no_speech_threshold = stt_config.get("noSpeechThreshold", 0.6)

    def transcribe(self, audio: bytes, sample_rate: int = 16000) -> str:
        usable = len(audio) - len(audio) % 2
        if usable == 0:
            return ""
        # faster-whisper expects float32 normalized to [-1, 1]
        audio_f32 = np.frombuffer(audio[:usable], dtype="<i2").astype(np.float32) / 32768.0

        t0 = time.monotonic()
        kwargs = {}
        if self._language:
            kwargs["language"] = self._language
        segments, _info = self._model.transcribe(audio_f32, **kwargs)
        seg_list = [s for s in segments if s.no_speech_prob < self._no_speech_threshold]
        text = " ".join(seg.text.strip() for seg in seg_list).strip()

        log.debug("Transcribed %.2fs of audio in %.2fs", len(audio_f32) / sample_rate, time.monotonic() - t0)
        return text
