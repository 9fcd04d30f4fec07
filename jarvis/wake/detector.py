"""Wake word detection by polling short recordings.

The default scorer is a loudness heuristic: a sample "contains the wake
word" when its mean squared amplitude exceeds ``sensitivity * 1_000_000``.
It fires on any loud speech, not specifically on the wake word. The
``openwakeword`` engine swaps in a real keyword model.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping

import numpy as np

from jarvis.audio.manager import AudioManager

log = logging.getLogger(__name__)

WakeWordCallback = Callable[[bool], object]

_ENERGY_SCALE = 1_000_000


def compute_energy(audio: bytes) -> float:
    """Mean squared amplitude of little-endian int16 samples."""
    usable = len(audio) - len(audio) % 2
    if usable == 0:
        return 0.0
    samples = np.frombuffer(audio[:usable], dtype="<i2").astype(np.float64)
    return float(np.mean(samples * samples))


class OpenWakeWordScorer:
    """Scores samples with an openWakeWord model (16kHz mono int16)."""

    def __init__(self, wake_config: Mapping):
        from openwakeword.model import Model

        self._model_name = wake_config["modelName"]
        self._threshold = wake_config.get("threshold", 0.5)
        self._model = Model(wakeword_models=[self._model_name], inference_framework="onnx")

    def __call__(self, audio: bytes) -> bool:
        usable = len(audio) - len(audio) % 2
        samples = np.frombuffer(audio[:usable], dtype="<i2")
        score = 0.0
        # openWakeWord expects 80ms frames
        for offset in range(0, len(samples) - 1279, 1280):
            prediction = self._model.predict(samples[offset:offset + 1280])
            score = max(score, prediction.get(self._model_name, 0.0))
        self._model.reset()
        return score >= self._threshold


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class WakeWordDetector:
    """Polls ``AudioManager.record_audio`` and notifies callbacks on detection.

    The loop runs as a single asyncio task. ``pause()`` waits for the sample
    in flight to finish and then keeps the microphone free until
    ``resume()``, so another owner can record in the meantime.
    """

    def __init__(self, config: Mapping, audio: AudioManager, scorer: Callable[[bytes], bool] | None = None):
        wake_cfg = config.get("wake", {})
        self._wake_word = config["jarvis"]["wakeWord"]
        self._sensitivity = config["jarvis"]["wakeWordSensitivity"]
        self._sample_ms = wake_cfg.get("sampleDurationMs", 2000)
        self._poll_delay_s = wake_cfg.get("pollDelayMs", 100) / 1000.0
        self._error_backoff_s = wake_cfg.get("errorBackoffMs", 1000) / 1000.0
        self._audio = audio

        if scorer is None and wake_cfg.get("engine", "energy") == "openwakeword":
            scorer = OpenWakeWordScorer(wake_cfg)
        self._scorer = scorer

        self._callbacks: list[WakeWordCallback] = []
        self._detecting = False
        self._task: asyncio.Task | None = None
        self._resume = asyncio.Event()
        self._resume.set()
        self._sample_lock = asyncio.Lock()

    @property
    def is_detecting(self) -> bool:
        return self._detecting

    @property
    def is_paused(self) -> bool:
        return not self._resume.is_set()

    def on_wake_word(self, callback: WakeWordCallback) -> None:
        self._callbacks.append(callback)

    def remove_callback(self, callback: WakeWordCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def is_wake_word(self, audio: bytes) -> bool:
        if self._scorer is not None:
            return self._scorer(audio)
        return compute_energy(audio) > self._sensitivity * _ENERGY_SCALE

    async def start_detection(self) -> None:
        if self._detecting:
            log.warning("Wake word detection already running")
            return

        log.info('Starting wake word detection for: "%s"', self._wake_word)
        self._detecting = True
        self._resume.set()
        self._task = asyncio.create_task(self._detect_loop(), name="wake-word-detector")

    async def stop_detection(self) -> None:
        if not self._detecting:
            return

        log.info("Stopping wake word detection...")
        self._detecting = False
        self._resume.set()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        log.info("Wake word detection stopped")

    def abort(self) -> None:
        """Stop detecting without waiting for the loop task to unwind."""
        self._detecting = False
        self._resume.set()
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def pause(self) -> None:
        """Stop sampling and wait until the microphone has been released."""
        self._resume.clear()
        async with self._sample_lock:
            pass

    def resume(self) -> None:
        self._resume.set()

    async def _detect_loop(self) -> None:
        while self._detecting:
            await self._resume.wait()
            if not self._detecting:
                break

            try:
                async with self._sample_lock:
                    audio = await self._audio.record_audio(self._sample_ms)
                detected = self.is_wake_word(audio)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Error during wake word detection")
                await asyncio.sleep(self._error_backoff_s)
                continue

            if detected and self._detecting:
                log.info('Wake word "%s" detected!', self._wake_word)
                self._notify()

            await asyncio.sleep(self._poll_delay_s)

    def _notify(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(True)
            except Exception:
                log.exception("Error in wake word callback")
