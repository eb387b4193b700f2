"""
Thread-safe pool of reusable numpy buffers.

Search loops that rotate the same mask dozens of times (projection
profile sweep) rent a scratch buffer per iteration instead of allocating
a new one. Rented buffers are always zero-filled before they are handed
out, so a previous user's pixels can never leak into a new computation.
"""

import threading
from collections import defaultdict

import numpy as np

_DEFAULT_MAX_PER_KEY = 8


class BufferPool:
    """Free-list of arrays keyed by ``(shape, dtype)``."""

    def __init__(self, max_per_key: int = _DEFAULT_MAX_PER_KEY) -> None:
        self._max_per_key = max_per_key
        self._free: dict[tuple, list[np.ndarray]] = defaultdict(list)
        self._lock = threading.Lock()

    @staticmethod
    def _key(shape: tuple[int, ...], dtype) -> tuple:
        return (tuple(shape), np.dtype(dtype).str)

    def rent(self, shape: tuple[int, ...], dtype=np.uint8) -> np.ndarray:
        """Return a zero-filled array of the given shape and dtype."""
        key = self._key(shape, dtype)
        with self._lock:
            bucket = self._free.get(key)
            buf = bucket.pop() if bucket else None
        if buf is None:
            return np.zeros(shape, dtype=dtype)
        buf.fill(0)
        return buf

    def give_back(self, buf: np.ndarray) -> None:
        """Return a buffer to the pool; extra buffers are dropped."""
        if buf is None or not buf.flags.c_contiguous or not buf.flags.owndata:
            return
        key = self._key(buf.shape, buf.dtype)
        with self._lock:
            bucket = self._free[key]
            if len(bucket) < self._max_per_key:
                bucket.append(buf)

    def clear(self) -> None:
        with self._lock:
            self._free.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(b) for b in self._free.values())
