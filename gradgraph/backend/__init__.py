"""
Matrix backends for gradgraph.

Two implementations share the MatrixBackend interface:
- numpy: synchronous CPU reference backend (deterministic, default)
- numba: deferred backend running numba JIT kernels

Select one at construction time with ``create_backend``.
"""
from typing import Optional

from ..config import GraphConfig
from .base import Initialization, MatrixBackend, MatrixBuffer, TargetBinding
from .buffer_pool import BufferPool, PooledBuffer
from .cpu import NumpyBackend

BACKENDS = {
    'numpy': NumpyBackend,
}


def create_backend(name: Optional[str] = None,
                   config: Optional[GraphConfig] = None) -> MatrixBackend:
    """
    Create a backend by name.

    Args:
        name: 'numpy' or 'numba' (default: config.backend)
        config: Shared configuration (default: GraphConfig())

    Returns:
        A fresh MatrixBackend
    """
    config = config or GraphConfig()
    name = name or config.backend
    if name == 'numba':
        # Deferred import: JIT setup only when the accelerated backend is requested
        from .numba_backend import NumbaBackend
        return NumbaBackend(config)
    try:
        backend_cls = BACKENDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown backend '{name}', expected one of {sorted(BACKENDS) + ['numba']}") from None
    return backend_cls(config)


__all__ = [
    'BACKENDS',
    'BufferPool',
    'Initialization',
    'MatrixBackend',
    'MatrixBuffer',
    'NumpyBackend',
    'PooledBuffer',
    'TargetBinding',
    'create_backend',
]
