"""
gradgraph - a minimal automatic-differentiation dependency graph.

Named matrices (nodes) are connected by a closed set of operations:
- Multiply: Y = W·X
- MultiplyAdd: Y = X·W + B (fully connected)
- Relu: Y = max(0, X)

Loss pairs seed gradients; the graph schedules forward and backward passes
in dependency order and applies gradient steps to trainable nodes. Matrices
live on a pluggable backend (numpy reference or numba accelerated), and a
whole graph can run inside an isolated worker driven by command messages:
- backend: MatrixBuffer, MatrixBackend, create_backend
- nn: Graph, Node, NodeSpec, operations
- worker: GraphWorker, GraphClient, ExecutionContext
"""

from gradgraph.backend import (
    Initialization,
    MatrixBackend,
    MatrixBuffer,
    NumpyBackend,
    create_backend,
)
from gradgraph.config import GraphConfig
from gradgraph.exceptions import (
    CyclicDependencyError,
    DimensionMismatchError,
    DuplicateNameError,
    GradGraphError,
    NotReadyError,
    ProtocolError,
    RemoteCommandError,
    SizeMismatchError,
    TargetBindingError,
    UnknownNodeError,
)
from gradgraph.logging_utils import configure_logging
from gradgraph.nn import (
    FullyConnected,
    Graph,
    Loss,
    MatrixMultiply,
    MultiplyAdd,
    Node,
    NodeSpec,
    NodeType,
    Operation,
    Relu,
)
from gradgraph.worker import ExecutionContext, GraphClient, GraphWorker

__all__ = [
    # Configuration
    'GraphConfig',
    'configure_logging',
    # Backends
    'Initialization',
    'MatrixBackend',
    'MatrixBuffer',
    'NumpyBackend',
    'create_backend',
    # Graph
    'FullyConnected',
    'Graph',
    'Loss',
    'MatrixMultiply',
    'MultiplyAdd',
    'Node',
    'NodeSpec',
    'NodeType',
    'Operation',
    'Relu',
    # Worker
    'ExecutionContext',
    'GraphClient',
    'GraphWorker',
    # Errors
    'CyclicDependencyError',
    'DimensionMismatchError',
    'DuplicateNameError',
    'GradGraphError',
    'NotReadyError',
    'ProtocolError',
    'RemoteCommandError',
    'SizeMismatchError',
    'TargetBindingError',
    'UnknownNodeError',
]

__version__ = '0.1.0'
