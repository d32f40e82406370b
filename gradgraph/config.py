"""
Configuration for graphs, backends and the worker.
"""
import os
from dataclasses import dataclass, fields, replace
from typing import Optional

BACKEND_NAMES = ('numpy', 'numba')
UPDATE_RULES = ('sgd', 'atan')


@dataclass(frozen=True)
class GraphConfig:
    """
    Settings shared by one execution context.

    Frozen: derive variants with ``config.replace(...)``.
    """

    backend: str = 'numpy'
    """Matrix backend: 'numpy' (synchronous reference) or 'numba' (accelerated)"""

    seed: Optional[int] = None
    """Seed for random initialization; None draws fresh entropy"""

    loss_scale: float = 1.0
    """Multiplier applied by the loss kernel to (actual - expected)"""

    update_rule: str = 'sgd'
    """
    Train-node update applied by apply_gradient:
    - 'sgd':  value -= lr * gradient
    - 'atan': value -= lr * atan(gradient), a bounded step per element
    """

    default_learning_rate: float = 0.05
    """Learning rate used when a command omits one"""

    max_pending_kernels: int = 256
    """Deferred backends flush their queue once this many kernels are waiting"""

    pool_max_memory_mb: int = 256
    """Upper bound on storage kept for reuse by the buffer pool"""

    log_level: str = 'WARNING'

    def __post_init__(self):
        if self.backend not in BACKEND_NAMES:
            raise ValueError(
                f"Unknown backend '{self.backend}', expected one of {BACKEND_NAMES}")
        if self.update_rule not in UPDATE_RULES:
            raise ValueError(
                f"Unknown update rule '{self.update_rule}', expected one of {UPDATE_RULES}")
        if self.max_pending_kernels < 1:
            raise ValueError("max_pending_kernels must be at least 1")

    def replace(self, **overrides) -> 'GraphConfig':
        return replace(self, **overrides)

    @classmethod
    def from_env(cls, prefix: str = 'GRADGRAPH_', **overrides) -> 'GraphConfig':
        """
        Build a config from ``GRADGRAPH_<FIELD>`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        values = {}
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None or raw == '':
                continue
            if f.name == 'seed':
                values[f.name] = int(raw)
            elif f.name in ('loss_scale', 'default_learning_rate'):
                values[f.name] = float(raw)
            elif f.name in ('max_pending_kernels', 'pool_max_memory_mb'):
                values[f.name] = int(raw)
            else:
                values[f.name] = raw
        values.update(overrides)
        return cls(**values)
