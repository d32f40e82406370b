"""
Graph nodes: named matrices carrying a value and a gradient.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Union

from ..backend.base import MatrixBuffer


class NodeType(str, Enum):
    """Role of a node during training"""
    INPUT = 'input'
    TRAIN = 'train'
    INTERMEDIATE = 'intermediate'
    OUTPUT = 'output'


@dataclass(frozen=True)
class NodeSpec:
    """
    Shape and role of a node.

    Wire form: ``{width, height, nodeType}``.
    """
    width: int
    height: int
    node_type: NodeType = NodeType.INTERMEDIATE

    def __post_init__(self):
        for field_name in ('width', 'height'):
            value = getattr(self, field_name)
            if isinstance(value, bool) or int(value) != value or value <= 0:
                raise ValueError(
                    f"Node spec {field_name} must be a positive integer, got {value!r}")
            object.__setattr__(self, field_name, int(value))
        try:
            object.__setattr__(self, 'node_type', NodeType(self.node_type))
        except ValueError:
            raise ValueError(
                f"Unknown nodeType {self.node_type!r}, expected one of "
                f"{[t.value for t in NodeType]}") from None

    @classmethod
    def parse(cls, spec: Union['NodeSpec', Mapping[str, Any]]) -> 'NodeSpec':
        """Accept a NodeSpec or its wire dictionary"""
        if isinstance(spec, cls):
            return spec
        try:
            width = spec['width']
            height = spec['height']
        except KeyError as e:
            raise ValueError(f"Node spec is missing {e.args[0]!r}") from None
        node_type = spec.get('nodeType', spec.get('node_type', NodeType.INTERMEDIATE))
        return cls(width=width, height=height, node_type=node_type)

    def to_dict(self) -> Dict[str, Any]:
        return {'width': self.width, 'height': self.height, 'nodeType': self.node_type.value}


class Node:
    """
    A named matrix in the graph.

    ``value`` is written by host writes or the forward pass of the operation
    producing this node; ``gradient`` (same shape, zero at creation) is
    written by loss seeding and backward passes. The node owns both buffers.
    """

    def __init__(self, name: str, spec: NodeSpec, value: MatrixBuffer,
                 gradient: MatrixBuffer):
        self.name = name
        self.spec = spec
        self.value = value
        self.gradient = gradient

    @property
    def width(self) -> int:
        return self.spec.width

    @property
    def height(self) -> int:
        return self.spec.height

    @property
    def node_type(self) -> NodeType:
        return self.spec.node_type

    def describe(self) -> str:
        return f"{self.name} : matrix {self.spec.height}x{self.spec.width}"

    def release(self):
        self.value.release()
        self.gradient.release()

    def __repr__(self):
        return f"Node({self.name!r}, {self.spec.height}x{self.spec.width}, {self.node_type.value})"
