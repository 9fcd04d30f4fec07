"""Microphone recording and speaker playback using sounddevice.

All buffers handled here are raw little-endian int16 PCM (interleaved when
``channels > 1``). Blocking device work runs in the default executor so the
service's event loop stays responsive.
"""

import asyncio
import logging
import queue
import threading
import time
from collections.abc import Mapping
from pathlib import Path

import numpy as np
import sounddevice as sd
import soundfile as sf

from jarvis.audio.ring_buffer import RingBuffer

log = logging.getLogger(__name__)

_PCM_DTYPE = "<i2"


class AudioManager:
    """Owns the microphone and speaker.

    Two capture modes exist side by side: timed ``record_audio()`` calls
    (used by wake word polling and command capture) and a continuous
    listening stream that feeds a ring buffer. Timed recordings are
    serialised; only one may hold the microphone at a time.
    """

    def __init__(self, audio_config: Mapping):
        self._sample_rate = audio_config["sampleRate"]
        self._channels = audio_config["channels"]
        self._bit_depth = audio_config["bitDepth"]
        self._encoding = audio_config.get("encoding", "signed-integer")
        self._silence_threshold = audio_config.get("silenceThreshold", 0.5)
        self._silence_duration = audio_config.get("silenceDuration", 1.0)
        self._blocksize = audio_config.get("blocksize", 1600)

        self.ring_buffer = RingBuffer(
            max_seconds=audio_config.get("ringBufferSeconds", 10),
            sample_rate=self._sample_rate,
        )
        self.frame_queue: queue.Queue[np.ndarray] = queue.Queue(maxsize=200)
        self._dropped_frames = 0
        self._dropped_lock = threading.Lock()
        self._stream: sd.InputStream | None = None
        self._listening = False

        self._record_lock = asyncio.Lock()
        self._play_lock = asyncio.Lock()
        self._recording_stop: threading.Event | None = None
        self._playing = threading.Event()

    # ── Continuous listening ────────────────────────────────────

    def _callback(self, indata: np.ndarray, frames: int, time_info, status):
        mono = indata[:, 0] if indata.ndim > 1 else indata
        frame = mono.astype(np.int16, copy=True)
        self.ring_buffer.write(frame)
        try:
            self.frame_queue.put_nowait(frame)
        except queue.Full:
            with self._dropped_lock:
                self._dropped_frames += 1

    def start_listening(self) -> None:
        if self._listening:
            log.warning("Already listening")
            return

        log.info("Starting audio listening...")
        try:
            self._stream = sd.InputStream(
                samplerate=self._sample_rate,
                channels=self._channels,
                dtype="int16",
                blocksize=self._blocksize,
                callback=self._callback,
            )
            self._stream.start()
        except Exception:
            self._stream = None
            log.exception("Failed to start audio listening")
            raise
        self._listening = True
        log.info("Audio listening started")

    def stop_listening(self) -> None:
        if not self._listening:
            return

        log.info("Stopping audio listening...")
        stream, self._stream = self._stream, None
        self._listening = False
        if stream is not None:
            stream.stop()
            stream.close()
        log.info("Audio listening stopped")

    @property
    def is_listening(self) -> bool:
        return self._listening

    def get_frame(self, timeout: float = 0.2) -> np.ndarray | None:
        """Next frame from the continuous stream, or None on timeout."""
        try:
            return self.frame_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def read_last(self, seconds: float) -> bytes:
        """The most recent *seconds* of continuously captured audio."""
        samples = self.ring_buffer.read_last(int(seconds * self._sample_rate))
        return samples.astype(_PCM_DTYPE).tobytes()

    @property
    def dropped_frames(self) -> int:
        with self._dropped_lock:
            return self._dropped_frames

    def consume_dropped_frames(self) -> int:
        """Return and reset the dropped frame counter."""
        with self._dropped_lock:
            dropped = self._dropped_frames
            self._dropped_frames = 0
        return dropped

    # ── Timed recording ─────────────────────────────────────────

    async def record_audio(self, timeout_ms: int = 10000) -> bytes:
        """Record until end of input or *timeout_ms*, whichever comes first."""
        async with self._record_lock:
            stop = threading.Event()
            self._recording_stop = stop
            loop = asyncio.get_running_loop()
            fut = loop.run_in_executor(None, self._record_blocking, timeout_ms / 1000.0, stop)
            try:
                return await fut
            except asyncio.CancelledError:
                # Hold the lock until the worker has closed its input stream
                stop.set()
                try:
                    await asyncio.shield(fut)
                except Exception:
                    log.exception("Cancelled recording failed while closing")
                raise
            finally:
                self._recording_stop = None

    def stop_recording(self) -> None:
        """Force the in-flight ``record_audio()`` call (if any) to finish now."""
        stop = self._recording_stop
        if stop is not None:
            stop.set()

    @property
    def is_recording(self) -> bool:
        return self._recording_stop is not None

    def _is_silent(self, block: np.ndarray) -> bool:
        if block.size == 0:
            return True
        rms = float(np.sqrt(np.mean(block.astype(np.float64) ** 2)))
        return rms / 32767.0 * 100.0 < self._silence_threshold

    def _record_blocking(self, timeout_s: float, stop: threading.Event) -> bytes:
        log.info("Recording audio for %dms...", int(timeout_s * 1000))
        chunks: list[bytes] = []
        deadline = time.monotonic() + timeout_s
        heard_sound = False
        silence_since: float | None = None

        with sd.InputStream(
            samplerate=self._sample_rate,
            channels=self._channels,
            dtype="int16",
            blocksize=self._blocksize,
        ) as stream:
            while not stop.is_set():
                now = time.monotonic()
                remaining = deadline - now
                if remaining <= 0:
                    log.info("Recording timeout reached")
                    break

                frames = min(self._blocksize, max(1, int(remaining * self._sample_rate)))
                block, _overflowed = stream.read(frames)
                chunks.append(np.asarray(block).astype(_PCM_DTYPE).tobytes())

                if not self._is_silent(np.asarray(block)):
                    heard_sound = True
                    silence_since = None
                elif heard_sound:
                    silence_since = silence_since or now
                    if now - silence_since >= self._silence_duration:
                        log.debug("End of input after %.2fs of silence", now - silence_since)
                        break

        buffer = b"".join(chunks)
        log.info("Audio recording completed, size: %d bytes", len(buffer))
        return buffer

    # ── Playback ────────────────────────────────────────────────

    async def play_audio(self, audio: bytes, sample_rate: int | None = None) -> None:
        """Play a PCM buffer and return once playback has finished."""
        async with self._play_lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._play_blocking, audio, sample_rate)

    def _play_blocking(self, audio: bytes, sample_rate: int | None) -> None:
        samples = self._to_samples(audio)
        if samples.size == 0:
            return
        log.info("Playing audio response...")
        self._playing.set()
        try:
            sd.play(samples, samplerate=sample_rate or self._sample_rate)
            sd.wait()
        finally:
            self._playing.clear()
        log.info("Audio playback completed")

    def stop_playback(self) -> None:
        sd.stop()
        self._playing.clear()

    @property
    def is_playing(self) -> bool:
        return self._playing.is_set()

    def _to_samples(self, audio: bytes) -> np.ndarray:
        usable = len(audio) - len(audio) % (2 * self._channels)
        samples = np.frombuffer(audio[:usable], dtype=_PCM_DTYPE)
        if self._channels > 1:
            samples = samples.reshape(-1, self._channels)
        return samples

    # ── Files ───────────────────────────────────────────────────

    def save_audio_to_file(self, audio: bytes, filename: str, directory: str | Path | None = None) -> Path:
        """Write *audio* under *directory* (default ``./temp``); ``.wav`` gets a WAV header."""
        base = Path(directory) if directory is not None else Path.cwd() / "temp"
        path = base / filename
        path.parent.mkdir(parents=True, exist_ok=True)

        if path.suffix.lower() == ".wav":
            frame_size = 2 * self._channels
            if len(audio) % frame_size:
                raise ValueError(
                    f"WAV audio must be a whole number of {frame_size}-byte frames, got {len(audio)} bytes"
                )
            sf.write(str(path), self._to_samples(audio), self._sample_rate, subtype="PCM_16")
        else:
            path.write_bytes(audio)
        log.info("Audio saved to file: %s", path)
        return path

    def load_audio_from_file(self, path: str | Path) -> bytes:
        path = Path(path)
        if path.suffix.lower() == ".wav":
            data, _sr = sf.read(str(path), dtype="int16")
            audio = np.asarray(data).astype(_PCM_DTYPE).tobytes()
        else:
            audio = path.read_bytes()
        log.info("Audio loaded from file: %s", path)
        return audio

    def get_audio_config(self) -> dict:
        return {
            "sampleRate": self._sample_rate,
            "channels": self._channels,
            "bitDepth": self._bit_depth,
            "encoding": self._encoding,
            "silenceThreshold": self._silence_threshold,
            "silenceDuration": self._silence_duration,
        }
