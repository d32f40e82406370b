"""
Operation kernels wired into the graph.

An Operation reads the values of its input nodes and writes the value of its
output node (forward). Its backward pass reads the same values plus the
output gradient dL/dY and writes the input gradients dL/dX. Shape contracts
are checked when the operation is created.

The closed set of connection kinds:
- Multiply:    Y = W·X
- MultiplyAdd: Y = X·W + B (fully connected)
- Relu:        Y = max(0, X)
Loss is not a connection: it seeds the gradient of an output node.
"""

from enum import Enum
from typing import Dict, Tuple

import numpy as np

from ..backend.base import MatrixBackend
from ..exceptions import DimensionMismatchError
from .node import Node


class OperationKind(str, Enum):
    MULTIPLY = 'Multiply'
    MULTIPLY_ADD = 'MultiplyAdd'
    RELU = 'Relu'


def _require_equal(first_label: str, first: int, second_label: str, second: int):
    if first != second:
        raise DimensionMismatchError(
            f"{first_label} ({first}) must equal {second_label} ({second}).")


class Operation:
    """
    Base class for connections between nodes.

    Subclasses declare ``kind`` and ``roles`` (the payload names of their
    nodes, output last) and implement forward/backward.
    """

    kind: OperationKind = None
    roles: Tuple[str, ...] = ()

    def __init__(self, backend: MatrixBackend, **nodes: Node):
        self.backend = backend
        self.nodes: Dict[str, Node] = {role: nodes[role] for role in self.roles}
        self.check_shapes()

    @property
    def inputs(self) -> Tuple[Node, ...]:
        return tuple(self.nodes[role] for role in self.roles[:-1])

    @property
    def output(self) -> Node:
        return self.nodes[self.roles[-1]]

    @property
    def name(self) -> str:
        return f"{self.kind.value}:{self.output.name}"

    def check_shapes(self):
        """Raise DimensionMismatchError if the nodes violate the shape contract"""
        raise NotImplementedError

    def forward(self):
        """Update the output value from the input values"""
        raise NotImplementedError

    def backward(self):
        """Update the input gradients from the output gradient"""
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.describe()})"


class MatrixMultiply(Operation):
    """
    Matrix multiplication: Y = W·X

    W: (h, k), X: (k, w), Y: (h, w)

    Backward accumulates:
        dW += dY·Xᵗ
        dX += Wᵗ·dY
    """

    kind = OperationKind.MULTIPLY
    roles = ('x', 'w', 'y')

    def check_shapes(self):
        x, w, y = self.nodes['x'], self.nodes['w'], self.nodes['y']
        _require_equal('W width', w.width, 'X height', x.height)
        _require_equal('W height', w.height, 'Y height', y.height)
        _require_equal('X width', x.width, 'Y width', y.width)

    def forward(self):
        x, w, y = self.nodes['x'], self.nodes['w'], self.nodes['y']
        self.backend.matmul(w.value, x.value, y.value)

    def backward(self):
        x, w, y = self.nodes['x'], self.nodes['w'], self.nodes['y']
        self.backend.matmul(y.gradient, x.value, w.gradient,
                            transpose_b=True, accumulate=True)
        self.backend.matmul(w.value, y.gradient, x.gradient,
                            transpose_a=True, accumulate=True)

    def describe(self) -> str:
        x, w, y = self.nodes['x'], self.nodes['w'], self.nodes['y']
        return f"{y.name} = {w.name} * {x.name}"


class MultiplyAdd(Operation):
    """
    Fully connected layer: Y = X·W + B

    X: (n, k), W: (k, m), B: (1, m) broadcast over rows, Y: (n, m)

    Backward overwrites the input gradients (they are zeroed once per
    training step by the graph):
        dW = Xᵗ·dY
        dB = colSum(dY)
        dX = dY·Wᵗ
    """

    kind = OperationKind.MULTIPLY_ADD
    roles = ('x', 'w', 'b', 'y')

    def check_shapes(self):
        x, w, b, y = (self.nodes[r] for r in self.roles)
        _require_equal('X width', x.width, 'W height', w.height)
        _require_equal('W width', w.width, 'Y width', y.width)
        _require_equal('X height', x.height, 'Y height', y.height)
        if b.height != 1:
            raise DimensionMismatchError(f"B height ({b.height}) must equal 1.")
        _require_equal('B width', b.width, 'Y width', y.width)

    def forward(self):
        x, w, b, y = (self.nodes[r] for r in self.roles)
        self.backend.matmul_add_bias(x.value, w.value, b.value, y.value)

    def backward(self):
        x, w, b, y = (self.nodes[r] for r in self.roles)
        self.backend.matmul(x.value, y.gradient, w.gradient, transpose_a=True)
        self.backend.column_sum(y.gradient, b.gradient)
        self.backend.matmul(y.gradient, w.value, x.gradient, transpose_b=True)

    def describe(self) -> str:
        x, w, b, y = (self.nodes[r] for r in self.roles)
        return f"{y.name} = {x.name} * {w.name} + {b.name}"


FullyConnected = MultiplyAdd


class Relu(Operation):
    """
    Rectified linear unit: Y = max(0, X), elementwise

    Backward: dX = dY ⊙ step(Y)
    """

    kind = OperationKind.RELU
    roles = ('x', 'y')

    def check_shapes(self):
        x, y = self.nodes['x'], self.nodes['y']
        _require_equal('X height', x.height, 'Y height', y.height)
        _require_equal('X width', x.width, 'Y width', y.width)

    def forward(self):
        self.backend.relu(self.nodes['x'].value, self.nodes['y'].value)

    def backward(self):
        x, y = self.nodes['x'], self.nodes['y']
        self.backend.relu_backward(y.value, y.gradient, x.gradient)

    def describe(self) -> str:
        return f"{self.nodes['y'].name} = relu({self.nodes['x'].name})"


OPERATIONS = {
    OperationKind.MULTIPLY: MatrixMultiply,
    OperationKind.MULTIPLY_ADD: MultiplyAdd,
    OperationKind.RELU: Relu,
}


class Loss:
    """
    Pairwise squared-error loss between an actual and an expected node.

    ``apply`` seeds actual.gradient with scale * (actual - expected), the
    gradient of 0.5 * scale * sum((actual - expected)^2). It is the start of
    backpropagation and has no backward pass of its own.
    """

    def __init__(self, backend: MatrixBackend, actual: Node, expected: Node,
                 scale: float = 1.0):
        if actual.spec.width != expected.spec.width or actual.spec.height != expected.spec.height:
            raise DimensionMismatchError(
                f"Loss actual shape {actual.height}x{actual.width} must equal "
                f"expected shape {expected.height}x{expected.width}.")
        self.backend = backend
        self.actual = actual
        self.expected = expected
        self.scale = scale

    def apply(self):
        self.backend.loss_gradient(self.actual.value, self.expected.value,
                                   self.actual.gradient, self.scale)

    def value(self) -> float:
        """Host-side scalar loss; synchronizes with pending work"""
        diff = (self.actual.value.read().astype(np.float64)
                - self.expected.value.read().astype(np.float64))
        return float(0.5 * self.scale * np.sum(diff * diff))

    def describe(self) -> str:
        return f"loss({self.actual.name}, {self.expected.name})"
