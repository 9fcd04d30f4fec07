import numpy as np

from jarvis.audio.ring_buffer import RingBuffer


def test_read_last_returns_oldest_first_across_wrap() -> None:
    buf = RingBuffer(max_seconds=1, sample_rate=10)
    buf.write(np.arange(8, dtype=np.int16))
    buf.write(np.arange(8, 14, dtype=np.int16))

    assert buf.available == 10
    assert buf.read_last(4).tolist() == [10, 11, 12, 13]
    assert buf.read_last(100).tolist() == list(range(4, 14))


def test_oversized_write_keeps_tail() -> None:
    buf = RingBuffer(max_seconds=1, sample_rate=5)
    buf.write(np.arange(12, dtype=np.int16))

    assert buf.read_last(5).tolist() == [7, 8, 9, 10, 11]


def test_clear_empties_buffer() -> None:
    buf = RingBuffer(max_seconds=1, sample_rate=5)
    buf.write(np.ones(3, dtype=np.int16))
    buf.clear()

    assert buf.available == 0
    assert buf.read_last(3).size == 0
