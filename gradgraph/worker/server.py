"""
GraphWorker: runs one ExecutionContext on its own thread.

The controller posts command messages into the worker's inbox; the worker
handles them strictly in arrival order and hands every response to the
``post_message`` callback.
"""

import logging
import queue
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from ..config import GraphConfig
from .context import ExecutionContext
from .protocol import error_message, ready_message

logger = logging.getLogger(__name__)

_STOP = object()


class GraphWorker:
    """
    Isolated execution thread owning one graph.

    Args:
        config: Configuration for the execution context
        post_message: Called on the worker thread with each response
    """

    def __init__(self, config: Optional[GraphConfig] = None,
                 post_message: Optional[Callable[[Dict[str, Any]], None]] = None):
        self.config = config or GraphConfig()
        self.context = ExecutionContext(self.config)
        self._post = post_message or (lambda message: None)
        self._inbox: 'queue.Queue' = queue.Queue()
        self._thread = threading.Thread(target=self._run, name='gradgraph-worker', daemon=True)
        self._started = False

    def start(self):
        if self._started:
            return
        self._started = True
        self._thread.start()

    def post_message(self, message: Mapping[str, Any]):
        """Enqueue a command; never blocks"""
        self._inbox.put(message)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def close(self, timeout: Optional[float] = None):
        """Stop after the commands already queued, then release the graph"""
        if not self._started:
            return
        self._inbox.put(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Worker did not stop within %s seconds", timeout)

    def _run(self):
        try:
            self.context.initialize()
        except Exception as e:
            logger.exception("Execution context initialization failed")
            self._send(error_message(f"Initialization failed: {e}"))
        else:
            self._send(ready_message())

        try:
            while True:
                message = self._inbox.get()
                if message is _STOP:
                    break
                for response in self.context.handle(message):
                    self._send(response)
        finally:
            self.context.close()
            logger.info("Worker stopped after %d commands", self.context.commands_handled)

    def _send(self, response: Dict[str, Any]):
        # A failing channel loses this response only; the inbox keeps draining
        try:
            self._post(response)
        except Exception:
            logger.exception("Failed to post %s response (requestId=%s)",
                             response.get('type'), response.get('requestId'))
