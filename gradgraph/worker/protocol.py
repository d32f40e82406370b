"""
Wire protocol between a controller and an execution context.

Messages are plain dictionaries so they can cross any channel:

    command:  {'type': str, 'payload': dict?, 'requestId': int?}
    response: {'type': str, 'payload': dict?, 'requestId': int?}
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from ..exceptions import ProtocolError
from ..nn.graph import Component
from ..nn.node import Node


class CommandType(str, Enum):
    CREATE_NODE = 'createNode'
    MULTIPLY = 'multiply'
    MULTIPLY_ADD = 'multiplyAdd'
    RELU = 'relu'
    LOSS = 'loss'
    SET_VALUES = 'setValues'
    FORWARD = 'forward'
    CALCULATE_GRADIENT = 'calculateGradient'
    APPLY_GRADIENT = 'applyGradient'
    BACKWARD_AND_ADD_GRADIENT = 'backwardAndAddGradient'
    GET_VALUES = 'getValues'
    GET_SPEC = 'getSpec'
    GET_COMPONENTS_IN_BUILD_ORDER = 'getComponentsInBuildOrder'
    GET_LOSS = 'getLoss'
    FINISH = 'finish'


class ResponseType(str, Enum):
    READY = 'ready'
    DONE = 'done'
    ERROR = 'error'
    GET_VALUES = 'getValues'
    GET_SPEC = 'getSpec'
    GET_COMPONENTS_IN_BUILD_ORDER = 'getComponentsInBuildOrder'
    GET_LOSS = 'getLoss'
    FINISH = 'finish'


# Commands answered with a dedicated response instead of 'done'
REQUEST_COMMANDS = frozenset({
    CommandType.GET_VALUES,
    CommandType.GET_SPEC,
    CommandType.GET_COMPONENTS_IN_BUILD_ORDER,
    CommandType.GET_LOSS,
    CommandType.FINISH,
})

# Required payload fields per command; learningRate falls back to the config
PAYLOAD_FIELDS: Dict[CommandType, Tuple[str, ...]] = {
    CommandType.CREATE_NODE: ('name', 'spec'),
    CommandType.MULTIPLY: ('x', 'w', 'y'),
    CommandType.MULTIPLY_ADD: ('x', 'w', 'b', 'y'),
    CommandType.RELU: ('x', 'y'),
    CommandType.LOSS: ('actual', 'expected'),
    CommandType.SET_VALUES: ('name', 'values'),
    CommandType.GET_VALUES: ('name',),
    CommandType.GET_SPEC: ('name',),
}


@dataclass(frozen=True)
class Command:
    type: CommandType
    payload: Optional[Dict[str, Any]] = None
    request_id: Optional[int] = None

    @classmethod
    def parse(cls, message: Mapping[str, Any]) -> 'Command':
        """
        Validate a raw command message.

        Raises:
            ProtocolError: not a mapping, unknown type or missing payload fields
        """
        if not isinstance(message, Mapping):
            raise ProtocolError(f"Command must be a mapping, got {type(message).__name__}")
        raw_type = message.get('type')
        try:
            command_type = CommandType(raw_type)
        except ValueError:
            raise ProtocolError(f"Unknown command: {raw_type}") from None

        payload = message.get('payload')
        if payload is not None and not isinstance(payload, Mapping):
            raise ProtocolError(f"Payload of {raw_type} must be a mapping")
        missing = [f for f in PAYLOAD_FIELDS.get(command_type, ()) if f not in (payload or ())]
        if missing:
            raise ProtocolError(
                f"Command {raw_type} is missing payload field(s): {', '.join(missing)}")
        if payload is not None:
            payload = dict(payload)
        return cls(command_type, payload, message.get('requestId'))

    def to_message(self) -> Dict[str, Any]:
        return command_message(self.type, self.payload, self.request_id)


@dataclass(frozen=True)
class ComponentDescription:
    """
    One build-order entry as reported to the controller.

    Nodes report their own name. Operations have no user-given name, so they
    report their synthetic ``'<Kind>:<output>'`` id, e.g. ``'Relu:Y'``. The id
    is a label for display, not a handle accepted by any command.
    """
    name: str
    type: str
    detail: str

    @classmethod
    def from_component(cls, component: Component) -> 'ComponentDescription':
        kind = 'node' if isinstance(component, Node) else 'operation'
        return cls(name=component.name, type=kind, detail=component.describe())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ComponentDescription':
        return cls(name=data['name'], type=data['type'], detail=data['detail'])

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def command_message(command_type, payload: Optional[Mapping[str, Any]] = None,
                    request_id: Optional[int] = None) -> Dict[str, Any]:
    message = {'type': CommandType(command_type).value}
    if payload is not None:
        message['payload'] = dict(payload)
    if request_id is not None:
        message['requestId'] = request_id
    return message


def response_message(response_type, payload: Optional[Mapping[str, Any]] = None,
                     request_id: Optional[int] = None) -> Dict[str, Any]:
    message = {'type': ResponseType(response_type).value}
    if payload is not None:
        message['payload'] = dict(payload)
    if request_id is not None:
        message['requestId'] = request_id
    return message


def ready_message() -> Dict[str, Any]:
    return response_message(ResponseType.READY)


def done_message(command_type: str, request_id: Optional[int] = None) -> Dict[str, Any]:
    return response_message(ResponseType.DONE, {'type': command_type}, request_id)


def error_message(message: str, command: Optional[str] = None,
                  request_id: Optional[int] = None) -> Dict[str, Any]:
    payload = {'message': message}
    if command is not None:
        payload['command'] = command
    return response_message(ResponseType.ERROR, payload, request_id)
