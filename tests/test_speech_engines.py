"""Tests for the STT/TTS factories and engines with stubbed model libraries."""

import importlib
import sys
import types
from pathlib import Path

import numpy as np
import pytest

from jarvis.stt import SpeechToText, create_stt
from jarvis.tts import TextToSpeech, create_tts

_AUDIO = {"sampleRate": 16000, "channels": 1}


def _module(name: str, **attrs):
    mod = types.ModuleType(name)
    for key, value in attrs.items():
        setattr(mod, key, value)
    return mod


# ── Simulated engines ────────────────────────────────────────────

def test_simulated_engines_are_the_default() -> None:
    stt = create_stt({"delayMs": 0, "text": "hello there"})
    tts = create_tts({"delayMs": 0, "bufferBytes": 64}, _AUDIO)

    assert isinstance(stt, SpeechToText)
    assert isinstance(tts, TextToSpeech)
    assert stt.transcribe(b"\x00\x00") == "hello there"
    assert tts.synthesize("hi") == (bytes(64), 16000)


def test_unknown_engines_are_rejected() -> None:
    with pytest.raises(ValueError, match="STT"):
        create_stt({"engine": "telepathy"})
    with pytest.raises(ValueError, match="TTS"):
        create_tts({"engine": "telepathy"}, _AUDIO)


# ── Whisper ──────────────────────────────────────────────────────

class FakeSegment:
    def __init__(self, text, no_speech_prob=0.0):
        self.text = text
        self.no_speech_prob = no_speech_prob


class FakeWhisperModel:
    instances: list["FakeWhisperModel"] = []

    def __init__(self, size, device="cpu", compute_type="int8"):
        self.size = size
        self.calls = []
        FakeWhisperModel.instances.append(self)

    def transcribe(self, audio, **kwargs):
        self.calls.append((audio, kwargs))
        return iter([FakeSegment(" what time "), FakeSegment("noise", 0.9), FakeSegment("is it ")]), None


def _load_whisper(monkeypatch):
    FakeWhisperModel.instances = []
    monkeypatch.setitem(sys.modules, "faster_whisper", _module("faster_whisper", WhisperModel=FakeWhisperModel))
    sys.modules.pop("jarvis.stt.whisper_stt", None)
    return importlib.import_module("jarvis.stt.whisper_stt")


def test_whisper_filters_no_speech_segments(monkeypatch) -> None:
    _load_whisper(monkeypatch)
    stt = create_stt({"engine": "whisper", "modelSize": "tiny.en", "language": "en-US"})
    pcm = np.full(160, 16384, dtype="<i2").tobytes()

    text = stt.transcribe(pcm)

    model = FakeWhisperModel.instances[0]
    audio, kwargs = model.calls[0]
    assert text == "what time is it"
    assert model.size == "tiny.en"
    assert kwargs == {"language": "en"}
    assert audio.dtype == np.float32
    assert audio[0] == pytest.approx(0.5)


def test_whisper_empty_audio_skips_model(monkeypatch) -> None:
    _load_whisper(monkeypatch)
    stt = create_stt({"engine": "whisper"})

    assert stt.transcribe(b"") == ""
    assert FakeWhisperModel.instances[0].calls == []


# ── Piper ────────────────────────────────────────────────────────

class FakeChunk:
    def __init__(self, audio):
        self.audio_float_array = audio


class FakePiperVoice:
    config = types.SimpleNamespace(sample_rate=22050)

    @classmethod
    def load(cls, path):
        voice = cls()
        voice.path = path
        return voice

    def synthesize(self, text, syn_config=None):
        for _sentence in text.split("."):
            yield FakeChunk(np.full(10, 0.5, dtype=np.float32))


def _load_piper(monkeypatch):
    monkeypatch.setitem(sys.modules, "piper", _module("piper"))
    monkeypatch.setitem(sys.modules, "piper.voice", _module("piper.voice", PiperVoice=FakePiperVoice))
    monkeypatch.setitem(
        sys.modules,
        "piper.config",
        _module("piper.config", SynthesisConfig=lambda **kw: types.SimpleNamespace(**kw)),
    )
    sys.modules.pop("jarvis.tts.piper_tts", None)
    return importlib.import_module("jarvis.tts.piper_tts")


def test_piper_missing_model_raises(monkeypatch, tmp_path: Path) -> None:
    _load_piper(monkeypatch)

    with pytest.raises(FileNotFoundError, match="Piper voice model not found"):
        create_tts({"engine": "piper", "modelDir": str(tmp_path), "piperVoice": "nope"}, _AUDIO)


def test_piper_joins_sentences_with_silence(monkeypatch, tmp_path: Path) -> None:
    _load_piper(monkeypatch)
    (tmp_path / "voice.onnx").write_bytes(b"")
    tts = create_tts(
        {"engine": "piper", "modelDir": str(tmp_path), "piperVoice": "voice", "sentenceSilence": 0.001},
        {"sampleRate": 16000, "channels": 2},
    )

    pcm, sample_rate = tts.synthesize("One. Two")

    samples = np.frombuffer(pcm, dtype="<i2").reshape(-1, 2)
    silence = int(0.001 * 22050)
    assert sample_rate == 22050
    assert len(samples) == 10 + silence + 10
    assert samples[0].tolist() == [16383, 16383]
    assert not samples[10:10 + silence].any()
