"""In-process handlers for tree events.

Handlers are registered per event class and may be plain functions or
coroutines. The engine dispatches inside the transaction of the operation
that produced the event, so a handler that raises rolls the operation back.

Usage:
    hooks = TreeEventHooks()

    @hooks.subscribe(TreeDeletedEvent)
    async def purge_cache(event: TreeDeletedEvent) -> None:
        await cache.delete(f"tree:{event.tree_id}")

    engine = NestedSetEngine(Category, hooks=hooks)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar, overload

if TYPE_CHECKING:
    from nesty_service.core.events.base import DomainEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="DomainEvent")

type EventHandler = Callable[[Any], Awaitable[None] | None]


class TreeEventHooks:
    """Registry of event handlers keyed by event class."""

    def __init__(self) -> None:
        self._handlers: dict[type[DomainEvent], list[EventHandler]] = {}

    @overload
    def subscribe(self, event_class: type[E], handler: None = None) -> Callable[[EventHandler], EventHandler]: ...

    @overload
    def subscribe(self, event_class: type[E], handler: EventHandler) -> EventHandler: ...

    def subscribe(
        self,
        event_class: type[E],
        handler: EventHandler | None = None,
    ) -> EventHandler | Callable[[EventHandler], EventHandler]:
        """Register a handler for one event class.

        Can be used as a decorator or direct method call.

        Example:
            hooks.subscribe(TreeDeletedEvent, on_tree_deleted)

            @hooks.subscribe(SubtreeDeletedEvent)
            def on_subtree_deleted(event): ...
        """

        def _subscribe(fn: EventHandler) -> EventHandler:
            handlers = self._handlers.setdefault(event_class, [])
            if fn not in handlers:
                handlers.append(fn)
            logger.debug(
                "Registered event handler",
                extra={"event_type": event_class.get_event_type(), "handler": getattr(fn, "__name__", repr(fn))},
            )
            return fn

        if handler is None:
            return _subscribe
        return _subscribe(handler)

    def unsubscribe(self, event_class: type[DomainEvent], handler: EventHandler) -> bool:
        """Remove a handler; returns False if it was not registered."""
        handlers = self._handlers.get(event_class, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def handlers_for(self, event: DomainEvent) -> list[EventHandler]:
        """Handlers registered for the event's class or any of its bases."""
        found: list[EventHandler] = []
        for cls in type(event).__mro__:
            found.extend(self._handlers.get(cls, ()))
        return found

    async def dispatch(self, event: DomainEvent) -> int:
        """Call every handler for `event` in registration order.

        Returns:
            Number of handlers called

        Raises:
            Whatever a handler raises; remaining handlers are skipped
        """
        handlers = self.handlers_for(event)
        for handler in handlers:
            result = handler(event)
            if inspect.isawaitable(result):
                await result

        logger.debug(
            "Dispatched event",
            extra={"event_type": event.get_event_type(), "event_id": event.event_id, "handlers": len(handlers)},
        )
        return len(handlers)

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return sum(len(h) for h in self._handlers.values())


__all__ = ["EventHandler", "TreeEventHooks"]
