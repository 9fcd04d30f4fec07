"""Text-to-speech using Piper (local neural TTS)."""

import logging
from collections.abc import Mapping
from pathlib import Path

import numpy as np
from piper.voice import PiperVoice

from jarvis.audio.earcon import to_pcm16

log = logging.getLogger(__name__)


class PiperTTS:
    """Synthesizes speech via a local Piper ONNX voice model."""

    def __init__(self, tts_config: Mapping, channels: int = 1):
        model_dir = Path(tts_config.get("modelDir", "models/piper"))
        voice_name = tts_config.get("piperVoice", "en_US-lessac-medium")
        self._sentence_silence = tts_config.get("sentenceSilence", 0.2)
        self._length_scale = tts_config.get("lengthScale")
        self._channels = channels

        model_path = model_dir / f"{voice_name}.onnx"
        if not model_path.exists():
            raise FileNotFoundError(
                f"Piper voice model not found: {model_path}\n"
                "Download it from: https://huggingface.co/rhasspy/piper-voices"
            )
        self._voice = PiperVoice.load(str(model_path))
        self._sample_rate = self._voice.config.sample_rate
        log.info("Loaded Piper voice: %s", voice_name)

    def synthesize(self, text: str) -> tuple[bytes, int]:
        from piper.config import SynthesisConfig

        syn_config = SynthesisConfig(length_scale=self._length_scale)
        silence = np.zeros(int(self._sentence_silence * self._sample_rate), dtype=np.float32)

        arrays: list[np.ndarray] = []
        for chunk in self._voice.synthesize(text, syn_config=syn_config):
            if arrays:
                arrays.append(silence)
            arrays.append(chunk.audio_float_array)

        audio = np.concatenate(arrays) if arrays else np.array([], dtype=np.float32)
        return to_pcm16(audio, self._channels), self._sample_rate
