"""
Error taxonomy for gradgraph.

Every error raised while processing one worker command derives from
GradGraphError, so the dispatch boundary can report it as a structured
``error`` response without stopping the execution context.
"""
from typing import Optional


class GradGraphError(Exception):
    """Base class for all gradgraph errors"""


class DuplicateNameError(GradGraphError):
    """A node name was reused within one graph"""

    def __init__(self, name: str):
        super().__init__(f"Node with name '{name}' already exists.")
        self.name = name


class UnknownNodeError(GradGraphError):
    """A referenced node name does not exist in the graph"""

    def __init__(self, name: str):
        super().__init__(f"Node with name '{name}' not found.")
        self.name = name


class DimensionMismatchError(GradGraphError):
    """A kernel shape contract was violated"""


class CyclicDependencyError(GradGraphError):
    """Build order was requested on a graph containing a cycle"""


class SizeMismatchError(GradGraphError):
    """Host data length does not match the matrix buffer shape"""


class TargetBindingError(GradGraphError):
    """A destination buffer could not be bound as the kernel target"""


class NotReadyError(GradGraphError):
    """A command arrived before the execution context finished initializing"""


class ProtocolError(GradGraphError):
    """A command message is malformed or names an unknown command"""


class RemoteCommandError(GradGraphError):
    """
    Controller-side view of an ``error`` response.

    Raised from the future of the request that failed inside the execution
    context.
    """

    def __init__(self, message: str, command: Optional[str] = None,
                 request_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.command = command
        self.request_id = request_id

    def __str__(self):
        if self.command:
            return f"{self.command}: {self.message}"
        return self.message
