"""
Tests for the size-bucketed buffer pool
"""
import numpy as np

from gradgraph.backend.buffer_pool import FLOAT32_BYTES, BufferPool


class TestBucketing:
    """Test size to bucket rounding"""

    def test_minimum_bucket(self):
        """Tiny requests use the 64 byte bucket"""
        pool = BufferPool()
        assert pool._size_to_bucket(1) == 64
        assert pool._size_to_bucket(0) == 64

    def test_rounds_up_to_power_of_two(self):
        """Requests round up to the next power of two"""
        pool = BufferPool()
        assert pool._size_to_bucket(64) == 64
        assert pool._size_to_bucket(65) == 128
        assert pool._size_to_bucket(1000) == 1024

    def test_oversized_requests_are_exact(self):
        """Requests above the largest bucket get an exact size"""
        pool = BufferPool()
        size = (1 << BufferPool.MAX_BUCKET_POWER) + 4
        assert pool._size_to_bucket(size) == size


class TestAcquireRelease:
    """Test buffer reuse"""

    def test_acquire_view_size(self):
        """The view covers exactly the requested elements"""
        pool = BufferPool()
        buf = pool.acquire(6 * FLOAT32_BYTES)
        assert buf.view().shape == (6,)
        assert buf.view().dtype == np.float32
        assert buf.array.size == 64 // FLOAT32_BYTES

    def test_release_then_reuse(self):
        """A released buffer is handed out again for the same bucket"""
        pool = BufferPool()
        first = pool.acquire(100)
        first.release()
        second = pool.acquire(120)

        assert second is first
        assert second.size == 120
        stats = pool.get_stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 1

    def test_double_release_is_ignored(self):
        """Releasing twice returns the buffer only once"""
        pool = BufferPool()
        buf = pool.acquire(100)
        buf.release()
        buf.release()
        assert pool.get_stats()['total_released'] == 1
        assert pool.get_stats()['buckets'] == {128: 1}

    def test_memory_limit_evicts(self):
        """Pooled memory stays under max_memory"""
        pool = BufferPool(max_memory=256)
        buffers = [pool.acquire(128) for _ in range(4)]
        for buf in buffers:
            buf.release()

        stats = pool.get_stats()
        assert stats['total_pooled_memory'] <= 256
        assert stats['evictions'] >= 2

    def test_clear(self):
        """clear drops every pooled buffer"""
        pool = BufferPool()
        pool.acquire(100).release()
        pool.clear()
        assert pool.get_stats()['total_pooled_memory'] == 0
        assert pool.get_stats()['buckets'] == {}

    def test_repr(self):
        pool = BufferPool()
        assert 'BufferPool' in repr(pool)
