"""
Command/response worker for gradgraph.

A GraphWorker thread owns one ExecutionContext (backend + graph) and
processes command messages in FIFO order. GraphClient posts commands and
correlates responses with futures.
"""
from .client import GraphClient
from .context import ExecutionContext
from .protocol import (
    Command,
    CommandType,
    ComponentDescription,
    ResponseType,
    command_message,
    done_message,
    error_message,
    ready_message,
    response_message,
)
from .server import GraphWorker

__all__ = [
    'Command',
    'CommandType',
    'ComponentDescription',
    'ExecutionContext',
    'GraphClient',
    'GraphWorker',
    'ResponseType',
    'command_message',
    'done_message',
    'error_message',
    'ready_message',
    'response_message',
]
