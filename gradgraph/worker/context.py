"""
Execution context: the single owner of a backend and its graph.

All commands for one graph are handled here, one at a time. This is the
only place where exceptions are caught and turned into ``error`` responses.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..backend import create_backend
from ..backend.base import MatrixBackend
from ..config import GraphConfig
from ..exceptions import NotReadyError, ProtocolError
from ..nn.graph import Graph
from .protocol import (
    Command,
    CommandType,
    ComponentDescription,
    REQUEST_COMMANDS,
    done_message,
    error_message,
    response_message,
)

logger = logging.getLogger(__name__)

Response = Dict[str, Any]


class ExecutionContext:
    """
    Dispatches protocol commands against one Graph.

    Example:
        >>> context = ExecutionContext(GraphConfig(seed=0))
        >>> context.initialize()
        >>> context.handle({'type': 'createNode', 'requestId': 1,
        ...                 'payload': {'name': 'X', 'spec': {'width': 2, 'height': 1}}})
        [{'type': 'done', 'payload': {'type': 'createNode'}, 'requestId': 1}]
    """

    def __init__(self, config: Optional[GraphConfig] = None):
        self.config = config or GraphConfig()
        self.backend: Optional[MatrixBackend] = None
        self.graph: Optional[Graph] = None
        self.commands_handled = 0
        self._handlers: Dict[CommandType, Callable[[Mapping[str, Any]], Optional[Dict]]] = {
            CommandType.CREATE_NODE: self._create_node,
            CommandType.MULTIPLY: self._multiply,
            CommandType.MULTIPLY_ADD: self._multiply_add,
            CommandType.RELU: self._relu,
            CommandType.LOSS: self._loss,
            CommandType.SET_VALUES: self._set_values,
            CommandType.FORWARD: self._forward,
            CommandType.CALCULATE_GRADIENT: self._calculate_gradient,
            CommandType.APPLY_GRADIENT: self._apply_gradient,
            CommandType.BACKWARD_AND_ADD_GRADIENT: self._backward_and_add_gradient,
            CommandType.GET_VALUES: self._get_values,
            CommandType.GET_SPEC: self._get_spec,
            CommandType.GET_COMPONENTS_IN_BUILD_ORDER: self._get_components,
            CommandType.GET_LOSS: self._get_loss,
            CommandType.FINISH: self._finish,
        }

    @property
    def ready(self) -> bool:
        return self.graph is not None

    def initialize(self):
        """Create the backend and an empty graph"""
        self.backend = create_backend(config=self.config)
        self.graph = Graph(self.config, backend=self.backend)
        logger.info("Execution context ready (backend=%s)", self.backend.name)

    def handle(self, message: Mapping[str, Any]) -> List[Response]:
        """
        Process one command.

        Returns:
            Responses to post back, in order. A failing command yields exactly
            one ``error`` response carrying its requestId.
        """
        command_name = message.get('type') if isinstance(message, Mapping) else None
        request_id = message.get('requestId') if isinstance(message, Mapping) else None
        try:
            if not self.ready:
                raise NotReadyError(
                    f"Execution context is not initialized; cannot run {command_name}.")
            command = Command.parse(message)
            logger.debug("Handling %s (requestId=%s)", command.type.value, command.request_id)
            payload = self._handlers[command.type](command.payload or {})
        except ProtocolError as e:
            logger.warning("Rejected command: %s", e)
            return [error_message(str(e), command_name, request_id)]
        except Exception as e:
            logger.exception("Command %s failed", command_name)
            return [error_message(str(e), command_name, request_id)]
        finally:
            self.commands_handled += 1

        if command.type in REQUEST_COMMANDS:
            return [response_message(command.type.value, payload, command.request_id)]
        return [done_message(command.type.value, command.request_id)]

    def close(self):
        if self.graph is not None:
            self.graph.close()
            self.graph = None
        if self.backend is not None:
            self.backend.close()
            logger.info("Execution context closed: %s", self.backend.stats())
            self.backend = None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _create_node(self, payload):
        self.graph.create_node(payload['name'], payload['spec'],
                               initialization=payload.get('initialization'),
                               data=payload.get('values'))

    def _multiply(self, payload):
        self.graph.multiply(payload['x'], payload['w'], payload['y'])

    def _multiply_add(self, payload):
        self.graph.multiply_add(payload['x'], payload['w'], payload['b'], payload['y'])

    def _relu(self, payload):
        self.graph.relu(payload['x'], payload['y'])

    def _loss(self, payload):
        self.graph.add_loss_pair(payload['actual'], payload['expected'])

    def _set_values(self, payload):
        self.graph.set_values(payload['name'], payload['values'])

    def _forward(self, payload):
        self.graph.forward()

    def _calculate_gradient(self, payload):
        self.graph.calculate_gradient()

    def _apply_gradient(self, payload):
        self.graph.apply_gradient(payload.get('learningRate'))

    def _backward_and_add_gradient(self, payload):
        self.graph.backward_and_add_gradient(payload.get('learningRate'))

    def _get_values(self, payload):
        values, gradients = self.graph.get_values(payload['name'])
        return {'values': values, 'gradients': gradients}

    def _get_spec(self, payload):
        return {'spec': self.graph.get_spec(payload['name']).to_dict()}

    def _get_components(self, payload):
        return {'componentNames': [ComponentDescription.from_component(c).to_dict()
                                   for c in self.graph.build_order()]}

    def _get_loss(self, payload):
        return {'loss': self.graph.compute_loss()}

    def _finish(self, payload):
        self.graph.finish()
