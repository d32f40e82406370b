"""
Accelerated backend built on numba JIT kernels.

Work is submitted, not executed: writes and kernel launches are appended to
a FIFO command queue and run when the queue is flushed, the way commands
accumulate in a device queue until the driver is told to wait. Flushes
happen on ``finish()``, on every ``read()`` (device-to-host sync point) and
whenever ``config.max_pending_kernels`` commands are waiting.
"""

import logging
from collections import deque
from typing import Callable, Deque, Tuple

import numpy as np

from . import numba_ops
from .base import HostData, MatrixBackend, MatrixBuffer, as_host_array

logger = logging.getLogger(__name__)

PendingKernel = Tuple[str, MatrixBuffer, Callable[[np.ndarray], None]]


class NumbaBackend(MatrixBackend):
    """Deferred backend running numba kernels in submission order"""

    name = 'numba'

    def __init__(self, config=None):
        super().__init__(config)
        self._pending: Deque[PendingKernel] = deque()
        self._flushes = 0

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def _submit(self, kernel: str, dst: MatrixBuffer, body: Callable[[np.ndarray], None]):
        # Fail at submission for targets that can never be bound
        self.target.verify(dst)
        self._pending.append((kernel, dst, body))
        if len(self._pending) >= self.config.max_pending_kernels:
            self._flush()

    def _flush(self):
        if not self._pending:
            return
        count = len(self._pending)
        self._flushes += 1
        try:
            while self._pending:
                kernel, dst, body = self._pending.popleft()
                self._kernel_launches += 1
                with self.target.bind(dst) as out:
                    body(out)
        except Exception:
            dropped = len(self._pending)
            self._pending.clear()
            logger.error("Kernel '%s' failed during flush; dropped %d queued kernels",
                         kernel, dropped)
            raise
        logger.debug("Flushed %d kernels", count)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def finish(self):
        self._flush()

    def stats(self) -> dict:
        stats = super().stats()
        stats['flushes'] = self._flushes
        stats['pending'] = len(self._pending)
        stats.update(numba_ops.get_backend_info())
        return stats

    # ------------------------------------------------------------------
    # Host transfer
    # ------------------------------------------------------------------

    def write(self, buffer: MatrixBuffer, data: HostData):
        # Copy now so later host-side mutation cannot leak into the queue
        flat = as_host_array(data, buffer.width, buffer.height).copy()

        def body(out):
            out.reshape(-1)[:] = flat

        self._submit('write', buffer, body)

    def read(self, buffer: MatrixBuffer) -> np.ndarray:
        self._flush()
        self._check_readable(buffer)
        return buffer.data.reshape(-1).copy()

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def matmul(self, a, b, out, transpose_a=False, transpose_b=False, accumulate=False):
        self._matmul_shape(a, b, out, transpose_a, transpose_b)
        self._check_readable(a, b)
        self._submit('matmul', out, lambda dst: numba_ops.matmul(
            a.data, b.data, dst, transpose_a, transpose_b, accumulate))

    def matmul_add_bias(self, x, w, b, out):
        self._matmul_shape(x, w, out, False, False)
        self._check_bias(b, out)
        self._check_readable(x, w, b)
        self._submit('matmul_add_bias', out, lambda dst: numba_ops.matmul_add_bias(
            x.data, w.data, b.data, dst))

    def column_sum(self, src, out):
        self._check_bias(out, src, 'dB', 'dY')
        self._check_readable(src)
        self._submit('column_sum', out, lambda dst: numba_ops.column_sum(src.data, dst))

    def relu(self, x, out):
        self._require_same_shape(x, out, 'X', 'Y')
        self._check_readable(x)
        self._submit('relu', out, lambda dst: numba_ops.relu(
            _flat(x), dst.reshape(-1)))

    def relu_backward(self, y, dy, dx):
        self._require_same_shape(y, dy, 'Y', 'dY')
        self._require_same_shape(dy, dx, 'dY', 'dX')
        self._check_readable(y, dy)
        self._submit('relu_backward', dx, lambda dst: numba_ops.relu_backward(
            _flat(y), _flat(dy), dst.reshape(-1)))

    def loss_gradient(self, actual, expected, out, scale=1.0):
        self._require_same_shape(actual, expected, 'actual', 'expected')
        self._require_same_shape(actual, out, 'actual', 'gradient')
        self._check_readable(actual, expected)
        scale = float(scale)
        self._submit('loss_gradient', out, lambda dst: numba_ops.loss_gradient(
            _flat(actual), _flat(expected), dst.reshape(-1), scale))

    def scaled_add(self, dst, src, scalar):
        self._require_same_shape(dst, src, 'destination', 'source')
        self._check_readable(src)
        scalar = float(scalar)
        self._submit('scaled_add', dst, lambda target: numba_ops.scaled_add(
            target.reshape(-1), _flat(src), scalar))

    def atan_update(self, dst, src, scalar):
        self._require_same_shape(dst, src, 'destination', 'source')
        self._check_readable(src)
        scalar = float(scalar)
        self._submit('atan_update', dst, lambda target: numba_ops.atan_update(
            target.reshape(-1), _flat(src), scalar))

    def fill_zero(self, dst):
        self._submit('fill_zero', dst, lambda target: numba_ops.fill(
            target.reshape(-1), 0.0))


def _flat(buffer: MatrixBuffer) -> np.ndarray:
    return buffer.data.reshape(-1)
