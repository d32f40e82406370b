"""
Matrix buffer and backend interfaces.

A MatrixBuffer is a 2-D float32 matrix (row-major, ``height`` rows of
``width`` values) whose storage belongs to one MatrixBackend. Host code only
reaches the storage through ``write`` and ``read``; every other mutation is a
backend kernel that binds the destination buffer as the single active target.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional, Sequence, Union

import numpy as np

from ..config import GraphConfig
from ..exceptions import DimensionMismatchError, SizeMismatchError, TargetBindingError
from .buffer_pool import FLOAT32_BYTES, BufferPool, PooledBuffer

logger = logging.getLogger(__name__)

HostData = Union[np.ndarray, Sequence[float]]


class Initialization(str, Enum):
    """Fill policy for a newly allocated matrix"""
    ZERO = 'zero'
    RANDOM = 'random'
    IDENTITY = 'identity'
    DATA = 'data'

    @classmethod
    def parse(cls, value: Union[str, 'Initialization', None]) -> 'Initialization':
        if value is None:
            return cls.ZERO
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Invalid initialization '{value}', expected one of "
                f"{[i.value for i in cls]}") from None


def as_host_array(data: HostData, width: int, height: int) -> np.ndarray:
    """Flatten host data to float32 and check it fills a width x height matrix"""
    flat = np.asarray(data, dtype=np.float32).reshape(-1)
    if flat.size != width * height:
        raise SizeMismatchError(
            f"Data size ({flat.size}) does not match matrix dimensions "
            f"({width}x{height}).")
    return flat


class MatrixBuffer:
    """
    Backend-resident 2-D float32 matrix.

    Shape is fixed at creation. The buffer is exclusively owned by whoever
    allocated it (normally a graph Node); operations only hold references.
    """

    def __init__(self, backend: 'MatrixBackend', width: int, height: int,
                 storage: PooledBuffer):
        self.backend = backend
        self.width = width
        self.height = height
        self._storage = storage
        self.data = storage.view().reshape(height, width)
        self.released = False

    @property
    def shape(self):
        return (self.height, self.width)

    @property
    def size(self) -> int:
        return self.width * self.height

    def same_shape(self, other: 'MatrixBuffer') -> bool:
        return self.width == other.width and self.height == other.height

    def write(self, data: HostData):
        """Copy host values into the buffer (row-major)"""
        self.backend.write(self, data)

    def read(self) -> np.ndarray:
        """
        Copy the buffer to a new flat host array.

        On deferred backends this waits for all queued work first.
        """
        return self.backend.read(self)

    def scaled_add(self, other: 'MatrixBuffer', scalar: float):
        """self += scalar * other"""
        self.backend.scaled_add(self, other, scalar)

    def release(self):
        """Return storage to the backend pool; the buffer is unusable afterwards"""
        self.backend.release(self)

    def _drop_storage(self):
        self.released = True
        self._storage.release()
        self.data = None

    def __repr__(self):
        state = ', released' if self.released else ''
        return f"MatrixBuffer({self.height}x{self.width}{state})"


class TargetBinding:
    """
    The single render/compute target binding point of a backend.

    Kernels write through ``with binding.bind(dst): ...``. Binding verifies
    that the buffer belongs to this backend, is still alive and that no other
    target is bound; the target is unbound when the block exits.
    """

    def __init__(self, backend: 'MatrixBackend'):
        self._backend = backend
        self.current: Optional[MatrixBuffer] = None
        self.bind_count = 0

    def verify(self, buffer: MatrixBuffer):
        if buffer.backend is not self._backend:
            raise TargetBindingError(
                f"Cannot bind {buffer!r}: it belongs to a different backend.")
        if buffer.released:
            raise TargetBindingError(f"Cannot bind {buffer!r}: buffer was released.")

    @contextmanager
    def bind(self, buffer: MatrixBuffer) -> Iterator[np.ndarray]:
        self.verify(buffer)
        if self.current is not None:
            raise TargetBindingError(
                f"Cannot bind {buffer!r}: target {self.current!r} is still bound.")
        self.current = buffer
        self.bind_count += 1
        try:
            yield buffer.data
        finally:
            self.current = None


class MatrixBackend(ABC):
    """
    Storage and kernels for MatrixBuffers.

    Subclasses implement the kernel entry points; allocation, host transfer
    and initialization policies are shared.
    """

    name = 'abstract'

    def __init__(self, config: Optional[GraphConfig] = None):
        self.config = config or GraphConfig()
        self.pool = BufferPool(max_memory=self.config.pool_max_memory_mb * 1024 * 1024)
        self.target = TargetBinding(self)
        self._rng = np.random.default_rng(self.config.seed)
        self._kernel_launches = 0
        self._live_buffers = 0

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate(self, width: int, height: int,
                 initialization: Union[str, Initialization, None] = Initialization.ZERO,
                 data: Optional[HostData] = None) -> MatrixBuffer:
        """
        Allocate a width x height matrix filled according to ``initialization``.

        Raises:
            ValueError: non-positive dimensions or unknown policy
            DimensionMismatchError: identity fill of a non-square matrix
            SizeMismatchError: data length differs from width * height
        """
        if int(width) != width or int(height) != height or width <= 0 or height <= 0:
            raise ValueError(
                f"Matrix dimensions must be positive integers, got {width}x{height}")
        width, height = int(width), int(height)
        initialization = Initialization.parse(initialization)

        if initialization is Initialization.DATA:
            if data is None:
                raise ValueError("Data must be specified when creating from data.")
            initial = as_host_array(data, width, height)
        elif initialization is Initialization.RANDOM:
            initial = self._random_data(width * height)
        elif initialization is Initialization.IDENTITY:
            if width != height:
                raise DimensionMismatchError(
                    f"Identity initialization requires a square matrix, got "
                    f"height {height} and width {width}.")
            initial = np.eye(height, dtype=np.float32).reshape(-1)
        else:
            initial = None

        storage = self.pool.acquire(width * height * FLOAT32_BYTES)
        buffer = MatrixBuffer(self, width, height, storage)
        # Fresh buffers are not referenced by any queued kernel yet
        if initial is None:
            buffer.data.fill(0.0)
        else:
            buffer.data.reshape(-1)[:] = initial
        self._live_buffers += 1
        logger.debug("Allocated %dx%d matrix (%s) on %s backend",
                     height, width, initialization.value, self.name)
        return buffer

    def release(self, buffer: MatrixBuffer):
        if buffer.released:
            return
        # Queued kernels may still read the storage
        self.finish()
        buffer._drop_storage()
        self._live_buffers -= 1

    def _random_data(self, n: int) -> np.ndarray:
        """Roughly gaussian, centered at zero, standard deviation about 0.1"""
        rng = self._rng
        values = 0.1 * (rng.random(n) - rng.random(n) + rng.random(n) - rng.random(n))
        return values.astype(np.float32)

    # ------------------------------------------------------------------
    # Host transfer
    # ------------------------------------------------------------------

    @abstractmethod
    def write(self, buffer: MatrixBuffer, data: HostData):
        """Host -> device copy"""

    @abstractmethod
    def read(self, buffer: MatrixBuffer) -> np.ndarray:
        """Device -> host copy, synchronizing with pending work"""

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    @abstractmethod
    def matmul(self, a: MatrixBuffer, b: MatrixBuffer, out: MatrixBuffer,
               transpose_a: bool = False, transpose_b: bool = False,
               accumulate: bool = False):
        """out (+)= op(a) @ op(b), op being an optional transpose"""

    @abstractmethod
    def matmul_add_bias(self, x: MatrixBuffer, w: MatrixBuffer, b: MatrixBuffer,
                        out: MatrixBuffer):
        """out = x @ w + b, b is a single row broadcast over rows"""

    @abstractmethod
    def column_sum(self, src: MatrixBuffer, out: MatrixBuffer):
        """out[0, j] = sum_i src[i, j]"""

    @abstractmethod
    def relu(self, x: MatrixBuffer, out: MatrixBuffer):
        """out = max(0, x)"""

    @abstractmethod
    def relu_backward(self, y: MatrixBuffer, dy: MatrixBuffer, dx: MatrixBuffer):
        """dx = dy where y > 0, else 0"""

    @abstractmethod
    def loss_gradient(self, actual: MatrixBuffer, expected: MatrixBuffer,
                      out: MatrixBuffer, scale: float = 1.0):
        """out = scale * (actual - expected)"""

    @abstractmethod
    def scaled_add(self, dst: MatrixBuffer, src: MatrixBuffer, scalar: float):
        """dst += scalar * src"""

    @abstractmethod
    def atan_update(self, dst: MatrixBuffer, src: MatrixBuffer, scalar: float):
        """dst -= scalar * atan(src)"""

    @abstractmethod
    def fill_zero(self, dst: MatrixBuffer):
        """dst = 0"""

    def finish(self):
        """Block until all submitted work has completed"""

    def close(self):
        self.finish()
        self.pool.clear()

    def stats(self) -> dict:
        return {
            'backend': self.name,
            'kernel_launches': self._kernel_launches,
            'target_binds': self.target.bind_count,
            'live_buffers': self._live_buffers,
            'pool': self.pool.get_stats(),
        }

    # ------------------------------------------------------------------
    # Shape checks shared by kernel implementations
    # ------------------------------------------------------------------

    @staticmethod
    def _require_same_shape(first: MatrixBuffer, second: MatrixBuffer,
                            first_name: str, second_name: str):
        if not first.same_shape(second):
            raise DimensionMismatchError(
                f"{first_name} shape {first.height}x{first.width} must equal "
                f"{second_name} shape {second.height}x{second.width}.")

    @staticmethod
    def _check_bias(bias: MatrixBuffer, rows: MatrixBuffer,
                    bias_name: str = 'B', rows_name: str = 'Y'):
        if bias.height != 1:
            raise DimensionMismatchError(
                f"{bias_name} height ({bias.height}) must equal 1.")
        if bias.width != rows.width:
            raise DimensionMismatchError(
                f"{bias_name} width ({bias.width}) must equal {rows_name} width "
                f"({rows.width}).")

    @staticmethod
    def _check_readable(*buffers: MatrixBuffer):
        for buffer in buffers:
            if buffer.released:
                raise ValueError(f"Cannot read {buffer!r}: buffer was released.")

    @staticmethod
    def _matmul_shape(a: MatrixBuffer, b: MatrixBuffer, out: MatrixBuffer,
                      transpose_a: bool, transpose_b: bool):
        a_rows, a_cols = (a.width, a.height) if transpose_a else (a.height, a.width)
        b_rows, b_cols = (b.width, b.height) if transpose_b else (b.height, b.width)
        if a_cols != b_rows:
            raise DimensionMismatchError(
                f"A width ({a_cols}) must equal B height ({b_rows}) for multiplication.")
        if out.height != a_rows:
            raise DimensionMismatchError(
                f"Output height ({out.height}) must equal A height ({a_rows}).")
        if out.width != b_cols:
            raise DimensionMismatchError(
                f"Output width ({out.width}) must equal B width ({b_cols}).")
