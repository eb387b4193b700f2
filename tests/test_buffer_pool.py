"""Tests for the scratch buffer pool."""

import numpy as np

from scanrestore.utils.buffer_pool import BufferPool


class TestBufferPool:
    def test_rent_returns_zeroed_buffer(self):
        pool = BufferPool()
        buf = pool.rent((4, 5))
        assert buf.shape == (4, 5)
        assert buf.dtype == np.uint8
        assert not buf.any()

    def test_returned_buffer_is_reused_and_cleared(self):
        pool = BufferPool()
        buf = pool.rent((8, 8))
        buf[:] = 77
        pool.give_back(buf)
        assert len(pool) == 1

        again = pool.rent((8, 8))
        assert again is buf
        assert not again.any()
        assert len(pool) == 0

    def test_keys_separate_shape_and_dtype(self):
        pool = BufferPool()
        pool.give_back(np.zeros((4, 4), dtype=np.uint8))
        assert pool.rent((4, 4), np.float32).dtype == np.float32
        assert len(pool) == 1

    def test_capacity_per_key(self):
        pool = BufferPool(max_per_key=2)
        for _ in range(5):
            pool.give_back(np.zeros((3, 3), dtype=np.uint8))
        assert len(pool) == 2

    def test_views_are_not_pooled(self):
        pool = BufferPool()
        base = np.zeros((6, 6), dtype=np.uint8)
        pool.give_back(base[1:4, 1:4])
        assert len(pool) == 0

    def test_clear(self):
        pool = BufferPool()
        pool.give_back(np.zeros((3, 3), dtype=np.uint8))
        pool.clear()
        assert len(pool) == 0
