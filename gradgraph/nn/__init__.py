"""
Graph module: nodes, operations and the dependency graph that schedules them.
"""
from .graph import Component, Graph
from .node import Node, NodeSpec, NodeType
from .operations import (
    OPERATIONS,
    FullyConnected,
    Loss,
    MatrixMultiply,
    MultiplyAdd,
    Operation,
    OperationKind,
    Relu,
)

__all__ = [
    'Component',
    'FullyConnected',
    'Graph',
    'Loss',
    'MatrixMultiply',
    'MultiplyAdd',
    'Node',
    'NodeSpec',
    'NodeType',
    'OPERATIONS',
    'Operation',
    'OperationKind',
    'Relu',
]
