"""
GraphClient: controller side of the worker protocol.

Commands are posted without waiting. Requests that expect an answer carry a
fresh ``requestId`` and return a ``concurrent.futures.Future`` that a
listener thread resolves when the matching response arrives, in whatever
order responses come back.
"""

import collections
import itertools
import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

import numpy as np

from ..backend.base import HostData
from ..config import GraphConfig
from ..exceptions import RemoteCommandError
from ..nn.node import NodeSpec
from .protocol import CommandType, ComponentDescription, ResponseType, command_message
from .server import GraphWorker

logger = logging.getLogger(__name__)

_STOP = object()

# Uncorrelated errors kept for inspection; older ones are dropped
MAX_ERRORS = 100

PendingRequest = Tuple[Future, Callable[[Dict[str, Any]], Any]]


class GraphClient:
    """
    Drives a GraphWorker through messages only.

    Example:
        >>> with GraphClient.create(GraphConfig(seed=0)) as client:
        ...     client.create_node('X', {'width': 2, 'height': 1, 'nodeType': 'input'})
        ...     client.set_values('X', [1.0, 2.0])
        ...     values, gradients = client.get_values('X').result(timeout=5)
    """

    def __init__(self, config: Optional[GraphConfig] = None, max_errors: int = MAX_ERRORS):
        self.config = config or GraphConfig()
        self._responses: 'queue.Queue' = queue.Queue()
        self.worker = GraphWorker(self.config, post_message=self._responses.put)
        self._listener = threading.Thread(target=self._listen, name='gradgraph-client',
                                          daemon=True)
        self._pending: Dict[int, PendingRequest] = {}
        self._request_ids = itertools.count(1)
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._startup_settled = threading.Event()
        self._startup_error: Optional[RemoteCommandError] = None
        self.errors: Deque[RemoteCommandError] = collections.deque(maxlen=max_errors)
        self.closed = False
        self._started = False

    @classmethod
    def create(cls, config: Optional[GraphConfig] = None,
               timeout: Optional[float] = 10.0) -> 'GraphClient':
        """Start a worker and wait until it reports ready"""
        client = cls(config)
        client.start()
        try:
            if not client.wait_for_ready(timeout):
                raise TimeoutError(f"Worker not ready after {timeout} seconds")
        except Exception:
            client.close()
            raise
        return client

    def start(self):
        if self._started:
            return
        self._started = True
        self._listener.start()
        self.worker.start()

    def wait_for_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the worker's one-shot ready message.

        Returns:
            True once ready, False if the timeout expired first

        Raises:
            RemoteCommandError: the worker failed to initialize
        """
        self._startup_settled.wait(timeout)
        if self._startup_error is not None:
            raise self._startup_error
        return self._ready.is_set()

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def clear_errors(self) -> List[RemoteCommandError]:
        """Remove and return the collected uncorrelated errors"""
        with self._lock:
            errors = list(self.errors)
            self.errors.clear()
        return errors

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post_message(self, message: Mapping[str, Any]):
        if self.closed:
            raise RuntimeError("GraphClient is closed")
        self.worker.post_message(message)

    def _post(self, command_type: CommandType, payload: Optional[Dict[str, Any]] = None):
        self.post_message(command_message(command_type, payload))

    def _request(self, command_type: CommandType, payload: Optional[Dict[str, Any]] = None,
                 convert: Callable[[Dict[str, Any]], Any] = lambda payload: payload) -> Future:
        future: Future = Future()
        with self._lock:
            request_id = next(self._request_ids)
            self._pending[request_id] = (future, convert)
        try:
            self.post_message(command_message(command_type, payload, request_id))
        except Exception:
            with self._lock:
                self._pending.pop(request_id, None)
            raise
        return future

    # ------------------------------------------------------------------
    # Fire-and-forget commands
    # ------------------------------------------------------------------

    def create_node(self, name: str, spec, initialization: Optional[str] = None,
                    values: Optional[HostData] = None):
        if isinstance(spec, NodeSpec):
            spec = spec.to_dict()
        payload = {'name': name, 'spec': dict(spec)}
        if initialization is not None:
            payload['initialization'] = getattr(initialization, 'value', initialization)
        if values is not None:
            payload['values'] = np.asarray(values, dtype=np.float32).reshape(-1)
        self._post(CommandType.CREATE_NODE, payload)

    def multiply(self, x: str, w: str, y: str):
        self._post(CommandType.MULTIPLY, {'x': x, 'w': w, 'y': y})

    def multiply_add(self, x: str, w: str, b: str, y: str):
        self._post(CommandType.MULTIPLY_ADD, {'x': x, 'w': w, 'b': b, 'y': y})

    def relu(self, x: str, y: str):
        self._post(CommandType.RELU, {'x': x, 'y': y})

    def loss(self, actual: str, expected: str):
        self._post(CommandType.LOSS, {'actual': actual, 'expected': expected})

    def set_values(self, name: str, values: HostData):
        # Snapshot now; the caller may reuse its array
        values = np.array(values, dtype=np.float32).reshape(-1)
        self._post(CommandType.SET_VALUES, {'name': name, 'values': values})

    def forward(self):
        self._post(CommandType.FORWARD)

    def calculate_gradient(self):
        self._post(CommandType.CALCULATE_GRADIENT)

    def apply_gradient(self, learning_rate: Optional[float] = None):
        self._post(CommandType.APPLY_GRADIENT, _learning_rate_payload(learning_rate))

    def backward_and_add_gradient(self, learning_rate: Optional[float] = None):
        self._post(CommandType.BACKWARD_AND_ADD_GRADIENT, _learning_rate_payload(learning_rate))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def get_values(self, name: str) -> Future:
        """Future of (values, gradients), flat float32 arrays"""
        return self._request(CommandType.GET_VALUES, {'name': name},
                             lambda payload: (payload['values'], payload['gradients']))

    def get_spec(self, name: str) -> Future:
        """Future of the node's NodeSpec"""
        return self._request(CommandType.GET_SPEC, {'name': name},
                             lambda payload: NodeSpec.parse(payload['spec']))

    def get_components_in_build_order(self) -> Future:
        """Future of a list of ComponentDescription"""
        return self._request(
            CommandType.GET_COMPONENTS_IN_BUILD_ORDER, None,
            lambda payload: [ComponentDescription.from_dict(c)
                             for c in payload['componentNames']])

    def get_loss(self) -> Future:
        """Future of the summed scalar loss"""
        return self._request(CommandType.GET_LOSS, None, lambda payload: payload['loss'])

    def finish(self) -> Future:
        """Future resolved once every earlier command has completed"""
        return self._request(CommandType.FINISH, None, lambda payload: None)

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    def _listen(self):
        while True:
            message = self._responses.get()
            if message is _STOP:
                break
            try:
                self._dispatch(message)
            except Exception:
                logger.exception("Failed to dispatch response %r", message.get('type'))

    def _dispatch(self, message: Dict[str, Any]):
        response_type = message.get('type')
        payload = message.get('payload') or {}
        request_id = message.get('requestId')

        if response_type == ResponseType.READY.value:
            self._ready.set()
            self._startup_settled.set()
            logger.info("Worker ready")
            return

        if response_type == ResponseType.ERROR.value:
            error = RemoteCommandError(payload.get('message', ''), payload.get('command'),
                                       request_id)
            pending = self._pop_pending(request_id)
            if pending is not None:
                pending[0].set_exception(error)
                return
            logger.warning("Worker error: %s", error)
            with self._lock:
                self.errors.append(error)
            if not self._ready.is_set() and self._startup_error is None:
                self._startup_error = error
                self._startup_settled.set()
            return

        if response_type == ResponseType.DONE.value:
            logger.debug("Done: %s", payload.get('type'))
            return

        pending = self._pop_pending(request_id)
        if pending is None:
            logger.warning("Response %s has no pending request (requestId=%s)",
                           response_type, request_id)
            return
        future, convert = pending
        try:
            future.set_result(convert(payload))
        except Exception as e:
            future.set_exception(e)

    def _pop_pending(self, request_id: Optional[int]) -> Optional[PendingRequest]:
        if request_id is None:
            return None
        with self._lock:
            return self._pending.pop(request_id, None)

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def close(self, timeout: Optional[float] = 10.0):
        """Let the worker drain its inbox, stop both threads, fail leftovers"""
        if self.closed:
            return
        self.closed = True
        if self._started:
            self.worker.close(timeout)
            self._responses.put(_STOP)
            self._listener.join(timeout)

        with self._lock:
            leftovers = list(self._pending.items())
            self._pending.clear()
        for request_id, (future, _) in leftovers:
            future.set_exception(RemoteCommandError(
                "Client closed before a response arrived", request_id=request_id))

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _learning_rate_payload(learning_rate: Optional[float]) -> Optional[Dict[str, float]]:
    if learning_rate is None:
        return None
    return {'learningRate': float(learning_rate)}
