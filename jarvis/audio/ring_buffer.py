"""Circular int16 sample store for the continuous-listening stream."""

import threading

import numpy as np


class RingBuffer:
    """Keeps the newest ``max_seconds`` of mono samples.

    Written from the sounddevice callback thread, read from anywhere.
    """

    def __init__(self, max_seconds: float, sample_rate: int = 16000):
        self._capacity = max(1, int(max_seconds * sample_rate))
        self._samples = np.zeros(self._capacity, dtype=np.int16)
        self._head = 0
        self._filled = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        with self._lock:
            return self._filled

    def write(self, data: np.ndarray) -> None:
        tail = np.asarray(data, dtype=np.int16)[-self._capacity:]
        skipped = len(data) - len(tail)
        with self._lock:
            start = (self._head + skipped) % self._capacity
            positions = (start + np.arange(len(tail))) % self._capacity
            self._samples[positions] = tail
            self._head = (start + len(tail)) % self._capacity
            self._filled = min(self._capacity, self._filled + len(data))

    def read_last(self, num_samples: int) -> np.ndarray:
        """Newest *num_samples* samples (fewer if not yet written), oldest first."""
        with self._lock:
            count = max(0, min(num_samples, self._filled))
            positions = (self._head - count + np.arange(count)) % self._capacity
            return self._samples[positions]

    def clear(self) -> None:
        with self._lock:
            self._samples.fill(0)
            self._head = 0
            self._filled = 0
