"""Short notification sounds played around spoken responses."""

import numpy as np


def _envelope(n: int, sample_rate: int) -> np.ndarray:
    envelope = np.ones(n, dtype=np.float64)
    fade_len = int(sample_rate * 0.02)
    if fade_len > 0 and fade_len * 2 < n:
        envelope[:fade_len] = np.linspace(0, 1, fade_len)
        envelope[-fade_len:] = np.linspace(1, 0, fade_len)
    return envelope


def generate_tone(
    frequency: float = 880,
    duration_s: float = 0.15,
    volume: float = 0.3,
    sample_rate: int = 16000,
) -> np.ndarray:
    """Generate a float32 sine tone with a 20ms fade-in/fade-out."""
    t = np.linspace(0, duration_s, int(sample_rate * duration_s), endpoint=False)
    tone = np.sin(2 * np.pi * frequency * t)
    return (tone * _envelope(len(t), sample_rate) * volume).astype(np.float32)


def generate_earcon(name: str, sample_rate: int = 16000, volume: float = 0.3) -> np.ndarray:
    """Generate a named earcon.

    Supported names:
        wake     -- rising two-note chime before the acknowledgement (E5->A5)
        error    -- double low buzz before an error fallback (A3, 80ms x2)
        goodbye  -- descending sweep when the service shuts down (A5->A4)
    """
    if name == "wake":
        pip1 = generate_tone(660, 0.08, volume, sample_rate)
        gap = np.zeros(int(sample_rate * 0.04), dtype=np.float32)
        pip2 = generate_tone(880, 0.10, volume, sample_rate)
        return np.concatenate([pip1, gap, pip2])

    if name == "error":
        buzz = generate_tone(220, 0.08, volume, sample_rate)
        gap = np.zeros(int(sample_rate * 0.06), dtype=np.float32)
        return np.concatenate([buzz, gap, buzz])

    if name == "goodbye":
        n = int(sample_rate * 0.20)
        freq = np.linspace(880, 440, n)
        tone = np.sin(2 * np.pi * np.cumsum(freq) / sample_rate)
        return (tone * _envelope(n, sample_rate) * volume).astype(np.float32)

    raise ValueError(f"Unknown earcon: {name!r}")


def to_pcm16(audio: np.ndarray, channels: int = 1) -> bytes:
    """Convert float32 samples in [-1, 1] to interleaved little-endian int16 bytes."""
    clipped = np.clip(audio, -1.0, 1.0)
    pcm = (clipped * 32767).astype("<i2")
    if channels > 1:
        pcm = np.repeat(pcm[:, None], channels, axis=1)
    return pcm.tobytes()


def earcon_pcm(name: str, sample_rate: int = 16000, volume: float = 0.3, channels: int = 1) -> bytes:
    """Named earcon as a PCM buffer ready for ``AudioManager.play_audio``."""
    return to_pcm16(generate_earcon(name, sample_rate=sample_rate, volume=volume), channels)
