"""Logging infrastructure.

Structured logging on top of the standard library:
- JSONL format for log aggregation
- Automatic context injection (tree_id, operation, ...)
- QueueHandler + QueueListener for non-blocking I/O
- Lazy evaluation for expensive debug output

Basic usage:
    import logging

    from nesty_service.infra.logging import get_lazy_logger, log_context

    logger = logging.getLogger(__name__)
    lazy_logger = get_lazy_logger(__name__)

    with log_context(tree_id=1, operation="child_of"):
        logger.info("Node moved")  # carries tree_id and operation
        lazy_logger.debug(lambda: f"rows: {expensive_dump()}")
"""

from nesty_service.infra.logging.config import configure_logging, setup_logging, shutdown
from nesty_service.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)
from nesty_service.infra.logging.formatters import JSONFormatter
from nesty_service.infra.logging.lazy import (
    LazyLoggerAdapter,
    LazyString,
    get_lazy_logger,
    lazy,
)

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "LazyString",
    "clear_log_context",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "lazy",
    "log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
