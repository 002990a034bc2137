"""Context management for structured logging.

Every record emitted while a tree mutation runs carries the tree id and the
operation name without each call site passing them explicitly. Context lives
in a ContextVar, so concurrent tasks each see their own copy.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        ```python
        set_log_context(tree_id=3, operation="child_of")
        logger.info("Node moved")  # record carries tree_id and operation
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Drop all logging context for the current task."""
    _log_context.set({})


@contextmanager
def log_context(**kwargs: Any) -> Iterator[dict[str, Any]]:
    """Scope extra context fields to a block, restoring the previous context on exit.

    Example:
        ```python
        with log_context(tree_id=node.tree_id, operation="delete"):
            await store.delete_where(...)
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    token = _log_context.set(current)
    try:
        yield current
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that copies the contextvars log context onto each record.

    Attached to the root QueueHandler by configure_logging(), so records from
    every logger propagating to root carry the context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            # Never overwrite standard or explicitly passed attributes
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
