"""
Dependency graph of nodes and operations.

The graph owns every Node (and through them every MatrixBuffer) and every
Operation. Dependency edges ``(source, target)`` say that ``source`` must be
computed before ``target``; build order is a topological sort of them.

There is no enforced state machine: callers run ``forward()`` before
``calculate_gradient()`` so that loss inputs are current.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np

from ..backend import create_backend
from ..backend.base import HostData, Initialization, MatrixBackend
from ..config import GraphConfig
from ..exceptions import (
    CyclicDependencyError,
    DuplicateNameError,
    UnknownNodeError,
)
from .node import Node, NodeSpec, NodeType
from .operations import OPERATIONS, Loss, Operation, OperationKind

logger = logging.getLogger(__name__)

Component = Union[Node, Operation]


class Graph:
    """
    Nodes, operations and their dependency edges.

    Example:
        >>> graph = Graph()
        >>> graph.create_node('X', {'width': 2, 'height': 1, 'nodeType': 'input'})
        >>> graph.create_node('W', {'width': 2, 'height': 2, 'nodeType': 'train'},
        ...                   initialization='identity')
        >>> graph.create_node('B', {'width': 2, 'height': 1, 'nodeType': 'train'})
        >>> graph.create_node('Y', {'width': 2, 'height': 1, 'nodeType': 'output'})
        >>> graph.multiply_add(x='X', w='W', b='B', y='Y')
        >>> graph.set_values('X', [1, 2])
        >>> graph.forward()
    """

    def __init__(self, config: Optional[GraphConfig] = None,
                 backend: Optional[MatrixBackend] = None):
        self.config = config or (backend.config if backend is not None else GraphConfig())
        self._owns_backend = backend is None
        self.backend = backend or create_backend(config=self.config)
        self._nodes: Dict[str, Node] = {}
        self._components: List[Component] = []
        self._dependencies: List[Tuple[Component, Component]] = []
        self._loss_pairs: List[Loss] = []
        self.closed = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def create_node(self, name: str, spec: Union[NodeSpec, Mapping[str, Any]],
                    initialization: Union[str, Initialization, None] = None,
                    data: Optional[HostData] = None) -> Node:
        """
        Create a node with a value and a zero gradient.

        Args:
            name: Unique node name
            spec: NodeSpec or wire dict ``{width, height, nodeType}``
            initialization: Value fill policy (default: zero, or data if given)
            data: Host values for the 'data' policy

        Raises:
            DuplicateNameError: name already used in this graph
        """
        if name in self._nodes:
            raise DuplicateNameError(name)
        spec = NodeSpec.parse(spec)
        if initialization is None and data is not None:
            initialization = Initialization.DATA

        value = self.backend.allocate(spec.width, spec.height, initialization, data)
        gradient = self.backend.allocate(spec.width, spec.height, Initialization.ZERO)
        node = Node(name, spec, value, gradient)
        self._nodes[name] = node
        self._components.append(node)
        logger.debug("Created node %s", node.describe())
        return node

    def connect(self, kind: Union[str, OperationKind], **names: str) -> Operation:
        """
        Add an operation between existing nodes.

        Args:
            kind: 'Multiply', 'MultiplyAdd' or 'Relu'
            **names: Node names by role (x, w, b, y as the kind requires)

        Raises:
            UnknownNodeError: a referenced node does not exist
            DimensionMismatchError: shapes violate the kernel contract
        """
        try:
            operation_cls = OPERATIONS[OperationKind(kind)]
        except ValueError:
            raise ValueError(
                f"Unknown operation kind '{kind}', expected one of "
                f"{[k.value for k in OperationKind]}") from None

        missing = [role for role in operation_cls.roles if role not in names]
        extra = [role for role in names if role not in operation_cls.roles]
        if missing or extra:
            raise ValueError(
                f"{operation_cls.kind.value} takes nodes {list(operation_cls.roles)}, "
                f"missing {missing}, unexpected {extra}")

        nodes = {role: self.get_node(names[role]) for role in operation_cls.roles}
        operation = operation_cls(self.backend, **nodes)

        self._components.append(operation)
        for node in operation.inputs:
            self._dependencies.append((node, operation))
        self._dependencies.append((operation, operation.output))
        logger.debug("Connected %s", operation.describe())
        return operation

    def multiply(self, x: str, w: str, y: str) -> Operation:
        """Y = W·X"""
        return self.connect(OperationKind.MULTIPLY, x=x, w=w, y=y)

    def multiply_add(self, x: str, w: str, b: str, y: str) -> Operation:
        """Y = X·W + B"""
        return self.connect(OperationKind.MULTIPLY_ADD, x=x, w=w, b=b, y=y)

    def relu(self, x: str, y: str) -> Operation:
        """Y = max(0, X)"""
        return self.connect(OperationKind.RELU, x=x, y=y)

    def add_loss_pair(self, actual: str, expected: str) -> Loss:
        """
        Register a loss between two same-shaped nodes.

        No dependency edges are added; loss seeding is driven by
        ``calculate_gradient``.
        """
        loss = Loss(self.backend, self.get_node(actual), self.get_node(expected),
                    scale=self.config.loss_scale)
        self._loss_pairs.append(loss)
        logger.debug("Added %s", loss.describe())
        return loss

    def add_dependency(self, source: Union[Component, str], target: Union[Component, str]):
        """
        Add an ordering edge: ``source`` is computed before ``target``.

        Cycles are not checked here; ``build_order`` reports them.
        """
        self._dependencies.append((self._component(source), self._component(target)))

    # ------------------------------------------------------------------
    # Lookup and host access
    # ------------------------------------------------------------------

    def get_node(self, name: str) -> Node:
        try:
            return self._nodes[name]
        except KeyError:
            raise UnknownNodeError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def operations(self) -> List[Operation]:
        return [c for c in self._components if isinstance(c, Operation)]

    @property
    def loss_pairs(self) -> List[Loss]:
        return list(self._loss_pairs)

    @property
    def dependencies(self) -> List[Tuple[Component, Component]]:
        return list(self._dependencies)

    def get_spec(self, name: str) -> NodeSpec:
        return self.get_node(name).spec

    def set_values(self, name: str, values: HostData):
        self.get_node(name).value.write(values)

    def get_values(self, name: str) -> Tuple[np.ndarray, np.ndarray]:
        """Fresh host copies of (value, gradient), flat row-major float32"""
        node = self.get_node(name)
        return node.value.read(), node.gradient.read()

    def _component(self, ref: Union[Component, str]) -> Component:
        if isinstance(ref, str):
            return self.get_node(ref)
        return ref

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def build_order(self) -> List[Component]:
        """
        All nodes and operations, every edge source before its target.

        Depth-first from each component in creation order, visiting sources
        in edge insertion order.

        Raises:
            CyclicDependencyError: the edges contain a cycle
        """
        sources: Dict[Component, List[Component]] = defaultdict(list)
        for source, target in self._dependencies:
            sources[target].append(source)

        result: List[Component] = []
        visited = set()
        visiting = set()

        def visit(component: Component):
            if component in visited:
                return
            if component in visiting:
                raise CyclicDependencyError(
                    f"Cyclic dependency detected in graph at '{component.name}'.")
            visiting.add(component)
            for source in sources.get(component, ()):
                visit(source)
            visiting.discard(component)
            visited.add(component)
            result.append(component)

        for component in self._components:
            visit(component)
        return result

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def forward(self):
        """Run every operation's forward pass in build order"""
        for component in self.build_order():
            if isinstance(component, Operation):
                component.forward()

    def calculate_gradient(self):
        """
        Zero non-output gradients, seed loss gradients, then backpropagate.

        Output nodes keep their gradient; loss pairs overwrite the gradient of
        their actual node.
        """
        order = self.build_order()
        for node in self._nodes.values():
            if node.node_type is not NodeType.OUTPUT:
                self.backend.fill_zero(node.gradient)
        for loss in self._loss_pairs:
            loss.apply()
        for component in reversed(order):
            if isinstance(component, Operation):
                component.backward()

    def apply_gradient(self, learning_rate: Optional[float] = None):
        """
        Gradient step on every train node.

        'sgd' rule: value -= lr * gradient; 'atan' rule: value -= lr * atan(gradient)
        """
        if learning_rate is None:
            learning_rate = self.config.default_learning_rate
        for component in reversed(self.build_order()):
            if isinstance(component, Node) and component.node_type is NodeType.TRAIN:
                if self.config.update_rule == 'atan':
                    self.backend.atan_update(component.value, component.gradient,
                                             learning_rate)
                else:
                    component.value.scaled_add(component.gradient, -learning_rate)

    def backward_and_add_gradient(self, learning_rate: Optional[float] = None):
        self.calculate_gradient()
        self.apply_gradient(learning_rate)

    def compute_loss(self) -> float:
        """Sum of the scalar losses of all loss pairs"""
        return sum(loss.value() for loss in self._loss_pairs)

    def finish(self):
        self.backend.finish()

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def close(self):
        """Release every buffer; the graph is unusable afterwards"""
        if self.closed:
            return
        self.closed = True
        self.backend.finish()
        for node in self._nodes.values():
            node.release()
        if self._owns_backend:
            self.backend.close()
        logger.debug("Graph closed, released %d nodes", len(self._nodes))

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        return (f"Graph(nodes={len(self._nodes)}, operations={len(self.operations)}, "
                f"backend={self.backend.name})")

