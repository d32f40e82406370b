"""
Buffer Pool for matrix storage

Implements storage reuse to avoid repeated allocation/deallocation overhead
when graphs are built and torn down inside one execution context.
Uses size-based bucketing for efficient buffer matching.

Key Features:
1. Size-bucketed pools (powers of 2, in bytes)
2. LRU eviction for memory management
3. Thread-safe operations
"""

import logging
import threading
import time
import weakref
from collections import defaultdict
from typing import Dict, List

import numpy as np

logger = logging.getLogger(__name__)

FLOAT32_BYTES = 4


class PooledBuffer:
    """
    Storage acquired from the pool.

    ``array`` is a flat float32 array of the bucket size; callers view the
    leading ``size // 4`` elements.
    """
    __slots__ = ('array', 'size', 'bucket_size', 'in_use', 'last_used', '_weak_pool')

    def __init__(self, array: np.ndarray, size: int, bucket_size: int, pool: 'BufferPool'):
        self.array = array
        self.size = size  # Actual requested size in bytes
        self.bucket_size = bucket_size  # Allocated bucket size (>= size)
        self._weak_pool = weakref.ref(pool) if pool else None
        self.in_use = True
        self.last_used = time.time()

    @property
    def pool(self):
        return self._weak_pool() if self._weak_pool else None

    @property
    def num_elements(self) -> int:
        return self.size // FLOAT32_BYTES

    def view(self) -> np.ndarray:
        """Flat float32 view over the requested region"""
        return self.array[:self.num_elements]

    def release(self):
        """Return buffer to pool for reuse"""
        if self.in_use:
            self.in_use = False
            self.last_used = time.time()
            pool = self.pool
            if pool:
                pool._return_buffer(self)


class BufferPool:
    """
    Storage pool with size-based bucketing.

    Buffers are organized into buckets by size (powers of 2).
    When a buffer is requested, the smallest bucket >= requested size is used.

    Example:
        >>> pool = BufferPool()
        >>> buf = pool.acquire(1024)  # Gets from 1024-byte bucket
        >>> # ... use buf.view() ...
        >>> buf.release()  # Returns to pool for reuse
    """

    # Bucket sizes: 64B to 256MB (powers of 2)
    MIN_BUCKET_POWER = 6
    MAX_BUCKET_POWER = 28

    # Maximum buffers per bucket
    MAX_BUFFERS_PER_BUCKET = 32

    # Maximum total memory in pool (256MB default)
    MAX_POOL_MEMORY = 256 * 1024 * 1024

    def __init__(self, max_memory: int = None):
        """
        Initialize buffer pool.

        Args:
            max_memory: Maximum total memory to keep in pool (bytes)
        """
        self.max_memory = max_memory or self.MAX_POOL_MEMORY

        # Bucket pools: bucket_size -> list of available PooledBuffers
        self._buckets: Dict[int, List[PooledBuffer]] = defaultdict(list)

        # Track total pooled memory
        self._total_pooled_memory = 0

        self._lock = threading.Lock()

        self._stats = {
            'hits': 0,
            'misses': 0,
            'allocations': 0,
            'evictions': 0,
            'total_acquired': 0,
            'total_released': 0,
        }

    def _size_to_bucket(self, size: int) -> int:
        """
        Round size up to nearest power of 2 bucket.

        Args:
            size: Requested buffer size in bytes

        Returns:
            Bucket size (power of 2)
        """
        if size <= 0:
            return 1 << self.MIN_BUCKET_POWER

        power = max(self.MIN_BUCKET_POWER, (size - 1).bit_length())
        if power > self.MAX_BUCKET_POWER:
            # Oversized requests get an exact allocation that is never pooled
            return size
        return 1 << power

    def acquire(self, size: int) -> PooledBuffer:
        """
        Acquire a buffer from the pool.

        If a suitable buffer exists in the pool, it's reused.
        Otherwise, a new buffer is created. Contents are unspecified.

        Args:
            size: Required buffer size in bytes

        Returns:
            PooledBuffer ready for use
        """
        bucket_size = self._size_to_bucket(size)

        with self._lock:
            self._stats['total_acquired'] += 1

            bucket = self._buckets[bucket_size]
            if bucket:
                buf = bucket.pop()
                buf.in_use = True
                buf.size = size
                buf.last_used = time.time()
                self._total_pooled_memory -= bucket_size
                self._stats['hits'] += 1
                return buf

            self._stats['misses'] += 1
            self._stats['allocations'] += 1

        array = np.empty(bucket_size // FLOAT32_BYTES, dtype=np.float32)
        return PooledBuffer(array=array, size=size, bucket_size=bucket_size, pool=self)

    def _return_buffer(self, buffer: PooledBuffer):
        """
        Return a buffer to the pool for reuse.

        Called by PooledBuffer.release()
        """
        with self._lock:
            self._stats['total_released'] += 1

            if buffer.bucket_size > (1 << self.MAX_BUCKET_POWER):
                return

            bucket = self._buckets[buffer.bucket_size]

            if len(bucket) >= self.MAX_BUFFERS_PER_BUCKET:
                oldest = min(bucket, key=lambda b: b.last_used)
                bucket.remove(oldest)
                self._total_pooled_memory -= oldest.bucket_size
                self._stats['evictions'] += 1

            while self._total_pooled_memory + buffer.bucket_size > self.max_memory:
                if not self._evict_lru():
                    break

            if self._total_pooled_memory + buffer.bucket_size > self.max_memory:
                # Larger than the whole pool budget, let it be collected
                self._stats['evictions'] += 1
                return

            bucket.append(buffer)
            self._total_pooled_memory += buffer.bucket_size

    def _evict_lru(self) -> bool:
        """
        Evict the least recently used pooled buffer.

        Returns:
            True if a buffer was evicted, False if pool is empty
        """
        oldest_buf = None
        oldest_bucket_size = None
        oldest_time = float('inf')

        for bucket_size, bucket in self._buckets.items():
            for buf in bucket:
                if buf.last_used < oldest_time:
                    oldest_time = buf.last_used
                    oldest_buf = buf
                    oldest_bucket_size = bucket_size

        if oldest_buf is None:
            return False

        self._buckets[oldest_bucket_size].remove(oldest_buf)
        self._total_pooled_memory -= oldest_bucket_size
        self._stats['evictions'] += 1
        return True

    def clear(self):
        """Drop all pooled buffers"""
        with self._lock:
            for bucket in self._buckets.values():
                bucket.clear()
            self._total_pooled_memory = 0
        logger.debug("Buffer pool cleared")

    def get_stats(self) -> dict:
        """Get pool statistics"""
        with self._lock:
            stats = dict(self._stats)
            stats['total_pooled_memory'] = self._total_pooled_memory
            stats['buckets'] = {
                size: len(bucket)
                for size, bucket in self._buckets.items()
                if bucket
            }
            stats['hit_rate'] = (
                stats['hits'] / max(1, stats['hits'] + stats['misses'])
            )
            return stats

    def __repr__(self):
        stats = self.get_stats()
        return (
            f"BufferPool(pooled={stats['total_pooled_memory']//1024}KB, "
            f"hit_rate={stats['hit_rate']:.1%}, "
            f"allocs={stats['allocations']})"
        )
