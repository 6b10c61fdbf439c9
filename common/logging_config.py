import logging
import os
import sys
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [node=%(node_id)s] - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class NodeIdFilter(logging.Filter):
    """Stamp every record with the id of the node that emitted it."""

    def __init__(self, node_id: str):
        super().__init__()
        self.node_id = node_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'node_id'):
            record.node_id = self.node_id
        return True


def _build_formatter(correlation_id: Optional[str] = None) -> logging.Formatter:
    fmt = LOG_FORMAT
    if correlation_id:
        fmt = fmt.replace('%(message)s', f'[{correlation_id}] - %(message)s')
    return logging.Formatter(fmt, datefmt=LOG_DATE_FORMAT)


def setup_logging(
    component_name: str,
    log_level: Optional[str] = None,
    correlation_id: Optional[str] = None,
    node_id: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration for a component.

    Module loggers created with get_logger(__name__) live under their own
    package names, so the handler is attached to the root logger as well as
    to the component logger.

    Args:
        component_name: Name of the component (e.g., 'coordinator')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or INFO
        correlation_id: Optional correlation ID to include in log format
        node_id: Id stamped on every record. Defaults to NODE_ID env var or the component name

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO').upper()

    level = getattr(logging, log_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    logger = logging.getLogger(component_name)
    logger.setLevel(level)

    if any(getattr(h, '_replication_handler', False) for h in root.handlers):
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(correlation_id))
    handler.addFilter(NodeIdFilter(node_id or os.getenv('NODE_ID', component_name)))
    handler._replication_handler = True

    root.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
