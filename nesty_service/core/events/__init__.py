"""Tree domain events and in-process hooks.

Usage:
    from nesty_service.core.events import TreeDeletedEvent, TreeEventHooks

    hooks = TreeEventHooks()
    hooks.subscribe(TreeDeletedEvent, lambda event: print(event.tree_id))
"""

from nesty_service.core.events.base import DomainEvent
from nesty_service.core.events.hooks import EventHandler, TreeEventHooks
from nesty_service.core.events.tree import SubtreeDeletedEvent, TreeDeletedEvent

__all__ = [
    "DomainEvent",
    "EventHandler",
    "SubtreeDeletedEvent",
    "TreeDeletedEvent",
    "TreeEventHooks",
]
