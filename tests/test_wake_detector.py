import asyncio
import importlib
import sys
import types

import numpy as np


def _load_detector_with_stubs(monkeypatch):
    """Load the wake word detector with sounddevice stubbed out."""
    monkeypatch.setitem(sys.modules, "sounddevice", types.SimpleNamespace(InputStream=object))
    for mod_name in list(sys.modules.keys()):
        if mod_name.startswith(("jarvis.audio.manager", "jarvis.wake")):
            sys.modules.pop(mod_name, None)
    return importlib.import_module("jarvis.wake.detector")


# ── Fakes ────────────────────────────────────────────────────────

class FakeAudio:
    def __init__(self, buffers=None, delay=0.0, errors=0):
        self.buffers = list(buffers or [])
        self.delay = delay
        self.errors = errors
        self.calls = 0
        self.in_flight = False

    async def record_audio(self, timeout_ms=10000):
        self.calls += 1
        self.in_flight = True
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight = False
        if self.errors:
            self.errors -= 1
            raise RuntimeError("microphone unplugged")
        if self.buffers:
            return self.buffers.pop(0)
        return bytes(320)


def _config(sensitivity=0.5):
    return {
        "jarvis": {"wakeWord": "jarvis", "wakeWordSensitivity": sensitivity},
        "wake": {"engine": "energy", "sampleDurationMs": 10, "pollDelayMs": 1, "errorBackoffMs": 1},
    }


def _pcm(value: int, n: int = 160) -> bytes:
    return np.full(n, value, dtype="<i2").tobytes()


async def _wait_until(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


# ── Tests ────────────────────────────────────────────────────────

def test_energy_threshold(monkeypatch) -> None:
    det_mod = _load_detector_with_stubs(monkeypatch)
    detector = det_mod.WakeWordDetector(_config(0.5), FakeAudio())

    # threshold is 0.5 * 1e6; amplitude 1000 -> energy 1e6
    assert detector.is_wake_word(_pcm(1000))
    assert not detector.is_wake_word(_pcm(500))
    assert not detector.is_wake_word(b"")
    assert det_mod.compute_energy(_pcm(-3)) == 9.0


def test_injected_scorer_replaces_energy_heuristic(monkeypatch) -> None:
    det_mod = _load_detector_with_stubs(monkeypatch)
    detector = det_mod.WakeWordDetector(_config(), FakeAudio(), scorer=lambda audio: True)

    assert detector.is_wake_word(b"")


def test_detection_notifies_callbacks_in_order(monkeypatch) -> None:
    det_mod = _load_detector_with_stubs(monkeypatch)
    audio = FakeAudio(buffers=[_pcm(0), _pcm(2000)])
    detector = det_mod.WakeWordDetector(_config(), audio)
    calls = []

    def broken(detected):
        calls.append(("broken", detected))
        raise RuntimeError("callback failure")

    detector.on_wake_word(lambda detected: calls.append(("first", detected)))
    detector.on_wake_word(broken)
    detector.on_wake_word(lambda detected: calls.append(("last", detected)))

    async def scenario():
        await detector.start_detection()
        await _wait_until(lambda: len(calls) >= 3)
        await detector.stop_detection()

    asyncio.run(scenario())

    assert calls[:3] == [("first", True), ("broken", True), ("last", True)]
    assert len(calls) == 3
    assert not detector.is_detecting


def test_removed_callback_is_not_called(monkeypatch) -> None:
    det_mod = _load_detector_with_stubs(monkeypatch)
    detector = det_mod.WakeWordDetector(_config(), FakeAudio())
    calls = []
    callback = calls.append

    detector.on_wake_word(callback)
    detector.remove_callback(callback)
    detector.remove_callback(callback)
    detector._notify()

    assert calls == []


def test_recording_errors_back_off_and_continue(monkeypatch) -> None:
    det_mod = _load_detector_with_stubs(monkeypatch)
    audio = FakeAudio(buffers=[_pcm(2000)], errors=2)
    detector = det_mod.WakeWordDetector(_config(), audio)
    detected = []
    detector.on_wake_word(detected.append)

    async def scenario():
        await detector.start_detection()
        await _wait_until(lambda: detected)
        await detector.stop_detection()

    asyncio.run(scenario())

    assert detected == [True]
    assert audio.calls >= 3


def test_second_start_does_not_spawn_second_loop(monkeypatch) -> None:
    det_mod = _load_detector_with_stubs(monkeypatch)
    detector = det_mod.WakeWordDetector(_config(), FakeAudio(delay=0.01))

    async def scenario():
        await detector.start_detection()
        first = detector._task
        await detector.start_detection()
        assert detector._task is first
        await detector.stop_detection()
        await detector.stop_detection()

    asyncio.run(scenario())


def test_pause_waits_for_sample_and_blocks_until_resume(monkeypatch) -> None:
    det_mod = _load_detector_with_stubs(monkeypatch)
    audio = FakeAudio(delay=0.02)
    detector = det_mod.WakeWordDetector(_config(), audio)

    async def scenario():
        await detector.start_detection()
        await _wait_until(lambda: audio.in_flight)
        await detector.pause()
        assert not audio.in_flight
        assert detector.is_paused

        calls = audio.calls
        await asyncio.sleep(0.05)
        assert audio.calls == calls

        detector.resume()
        await _wait_until(lambda: audio.calls > calls)
        await detector.stop_detection()

    asyncio.run(scenario())


def test_abort_cancels_loop_without_awaiting(monkeypatch) -> None:
    det_mod = _load_detector_with_stubs(monkeypatch)
    audio = FakeAudio(delay=0.01)
    detector = det_mod.WakeWordDetector(_config(), audio)

    async def scenario():
        await detector.start_detection()
        task = detector._task
        await asyncio.sleep(0.02)
        detector.abort()
        assert not detector.is_detecting
        await asyncio.sleep(0.01)
        assert task.done()

    asyncio.run(scenario())
