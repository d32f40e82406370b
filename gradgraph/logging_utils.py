"""
Logging setup for the gradgraph package logger.
"""
import logging
from typing import Optional, Union

PACKAGE_LOGGER = 'gradgraph'
LOG_FORMAT = '%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s'


def configure_logging(level: Optional[Union[int, str]] = None,
                      handler: Optional[logging.Handler] = None) -> logging.Logger:
    """
    Attach a handler to the package logger and set its level.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Logging level name or number (default: WARNING)
        handler: Handler to install (default: StreamHandler to stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    if level is None:
        level = logging.WARNING
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)

    for existing in list(logger.handlers):
        if getattr(existing, '_gradgraph_handler', False):
            logger.removeHandler(existing)

    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._gradgraph_handler = True
    logger.addHandler(handler)
    return logger
