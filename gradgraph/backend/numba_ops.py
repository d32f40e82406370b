"""
Numba-Accelerated Matrix Kernels

JIT-compiled kernels behind the accelerated backend. Every kernel writes
into a caller-provided destination array (the bound target) instead of
returning a new one. 2-D kernels take (rows, cols) float32 arrays,
elementwise kernels take flat views of equally sized buffers.
"""

import math

import numba
import numpy as np
from numba import jit, prange


# ============================================================================
# Matrix Multiply
# ============================================================================

@jit(nopython=True, parallel=True, fastmath=True, cache=True)
def matmul(a: np.ndarray, b: np.ndarray, out: np.ndarray,
           transpose_a: bool, transpose_b: bool, accumulate: bool) -> None:
    """
    out (+)= op(a) @ op(b)

    Args:
        a: Left operand, (M, K) or (K, M) when transpose_a
        b: Right operand, (K, N) or (N, K) when transpose_b
        out: Destination (M, N)
        transpose_a: Read a transposed
        transpose_b: Read b transposed
        accumulate: Add to out instead of overwriting it
    """
    rows, cols = out.shape
    inner = a.shape[0] if transpose_a else a.shape[1]

    for i in prange(rows):
        for j in range(cols):
            acc = 0.0
            for k in range(inner):
                av = a[k, i] if transpose_a else a[i, k]
                bv = b[j, k] if transpose_b else b[k, j]
                acc += av * bv
            if accumulate:
                out[i, j] += acc
            else:
                out[i, j] = acc


@jit(nopython=True, parallel=True, fastmath=True, cache=True)
def matmul_add_bias(x: np.ndarray, w: np.ndarray, bias: np.ndarray,
                    out: np.ndarray) -> None:
    """
    Fully connected forward: out = x @ w + bias

    Args:
        x: Input (batch, in_features)
        w: Weights (in_features, out_features)
        bias: Bias row (1, out_features), broadcast over the batch
        out: Destination (batch, out_features)
    """
    batch_size, out_features = out.shape
    in_features = x.shape[1]

    for i in prange(batch_size):
        for j in range(out_features):
            acc = 0.0
            for k in range(in_features):
                acc += x[i, k] * w[k, j]
            out[i, j] = acc + bias[0, j]


@jit(nopython=True, parallel=True, cache=True)
def column_sum(src: np.ndarray, out: np.ndarray) -> None:
    """out[0, j] = sum over rows of src[:, j]"""
    rows, cols = src.shape
    for j in prange(cols):
        acc = 0.0
        for i in range(rows):
            acc += src[i, j]
        out[0, j] = acc


# ============================================================================
# ReLU
# ============================================================================

@jit(nopython=True, parallel=True, fastmath=True, cache=True)
def relu(x: np.ndarray, out: np.ndarray) -> None:
    """out = max(0, x), flat arrays"""
    for i in prange(x.shape[0]):
        out[i] = max(0.0, x[i])


@jit(nopython=True, parallel=True, fastmath=True, cache=True)
def relu_backward(y: np.ndarray, dy: np.ndarray, dx: np.ndarray) -> None:
    """dx = dy * step(y), step(v) = 1 if v > 0 else 0"""
    for i in prange(y.shape[0]):
        if y[i] > 0.0:
            dx[i] = dy[i]
        else:
            dx[i] = 0.0


# ============================================================================
# Loss / updates
# ============================================================================

@jit(nopython=True, parallel=True, fastmath=True, cache=True)
def loss_gradient(actual: np.ndarray, expected: np.ndarray, out: np.ndarray,
                  scale: float) -> None:
    """Squared-error gradient: out = scale * (actual - expected)"""
    for i in prange(actual.shape[0]):
        out[i] = scale * (actual[i] - expected[i])


@jit(nopython=True, parallel=True, fastmath=True, cache=True)
def scaled_add(dst: np.ndarray, src: np.ndarray, scalar: float) -> None:
    """dst += scalar * src"""
    for i in prange(dst.shape[0]):
        dst[i] += scalar * src[i]


@jit(nopython=True, parallel=True, fastmath=True, cache=True)
def atan_update(dst: np.ndarray, src: np.ndarray, scalar: float) -> None:
    """dst -= scalar * atan(src)"""
    for i in prange(dst.shape[0]):
        dst[i] -= scalar * math.atan(src[i])


@jit(nopython=True, parallel=True, cache=True)
def fill(dst: np.ndarray, value: float) -> None:
    for i in prange(dst.shape[0]):
        dst[i] = value


# ============================================================================
# Utility
# ============================================================================

def get_backend_info() -> dict:
    """Get information about the numba runtime"""
    return {
        'numba_version': numba.__version__,
        'num_threads': numba.get_num_threads(),
    }
