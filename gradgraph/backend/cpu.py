"""
Numpy reference backend.

Every kernel runs synchronously on the calling thread, so results are
deterministic and ``finish`` has nothing to wait for. Used as the ground
truth in tests and as the default backend.
"""

import numpy as np

from .base import HostData, MatrixBackend, MatrixBuffer, as_host_array


class NumpyBackend(MatrixBackend):
    """Synchronous CPU backend built on numpy"""

    name = 'numpy'

    def write(self, buffer: MatrixBuffer, data: HostData):
        flat = as_host_array(data, buffer.width, buffer.height)
        with self.target.bind(buffer) as out:
            out.reshape(-1)[:] = flat

    def read(self, buffer: MatrixBuffer) -> np.ndarray:
        self._check_readable(buffer)
        return buffer.data.reshape(-1).copy()

    def matmul(self, a, b, out, transpose_a=False, transpose_b=False, accumulate=False):
        self._matmul_shape(a, b, out, transpose_a, transpose_b)
        self._check_readable(a, b)
        lhs = a.data.T if transpose_a else a.data
        rhs = b.data.T if transpose_b else b.data
        product = np.matmul(lhs, rhs)
        with self._launch(out) as dst:
            if accumulate:
                dst += product
            else:
                dst[...] = product

    def matmul_add_bias(self, x, w, b, out):
        self._matmul_shape(x, w, out, False, False)
        self._check_bias(b, out)
        self._check_readable(x, w, b)
        product = np.matmul(x.data, w.data) + b.data
        with self._launch(out) as dst:
            dst[...] = product

    def column_sum(self, src, out):
        self._check_bias(out, src, 'dB', 'dY')
        self._check_readable(src)
        with self._launch(out) as dst:
            dst[...] = src.data.sum(axis=0, keepdims=True)

    def relu(self, x, out):
        self._require_same_shape(x, out, 'X', 'Y')
        self._check_readable(x)
        with self._launch(out) as dst:
            np.maximum(x.data, 0.0, out=dst)

    def relu_backward(self, y, dy, dx):
        self._require_same_shape(y, dy, 'Y', 'dY')
        self._require_same_shape(dy, dx, 'dY', 'dX')
        self._check_readable(y, dy)
        with self._launch(dx) as dst:
            dst[...] = np.where(y.data > 0.0, dy.data, np.float32(0.0))

    def loss_gradient(self, actual, expected, out, scale=1.0):
        self._require_same_shape(actual, expected, 'actual', 'expected')
        self._require_same_shape(actual, out, 'actual', 'gradient')
        self._check_readable(actual, expected)
        diff = np.float32(scale) * (actual.data - expected.data)
        with self._launch(out) as dst:
            dst[...] = diff

    def scaled_add(self, dst, src, scalar):
        self._require_same_shape(dst, src, 'destination', 'source')
        self._check_readable(src)
        update = np.float32(scalar) * src.data
        with self._launch(dst) as target:
            target += update

    def atan_update(self, dst, src, scalar):
        self._require_same_shape(dst, src, 'destination', 'source')
        self._check_readable(src)
        update = np.float32(scalar) * np.arctan(src.data)
        with self._launch(dst) as target:
            target -= update

    def fill_zero(self, dst):
        with self._launch(dst) as target:
            target.fill(0.0)

    def _launch(self, dst: MatrixBuffer):
        self._kernel_launches += 1
        return self.target.bind(dst)
