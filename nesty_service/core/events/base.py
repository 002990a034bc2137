"""Domain event base class.

Events are immutable records of something that happened to a tree. The
engine builds them after destructive operations and hands them to
TreeEventHooks; nothing here publishes to a broker.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, ClassVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class DomainEvent(BaseModel):
    """Base class for all domain events.

    Subclasses must define:
    - event_type: ClassVar[str] - Unique event type identifier (e.g., "tree.deleted")
    - event_version: ClassVar[int] - Schema version for evolution (default: 1)

    Example:
        class NodeRenamedEvent(DomainEvent):
            event_type: ClassVar[str] = "node.renamed"

            tree_id: int
            node_id: int

    Attributes:
        event_id: Unique identifier for this event instance
        timestamp: When the event occurred (UTC)
        correlation_id: ID linking related events
        metadata: Additional context
    """

    event_type: ClassVar[str] = "domain.event"
    event_version: ClassVar[int] = 1

    event_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique event identifier",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Event timestamp in UTC",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Correlation ID for tracing related events",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event metadata",
    )

    model_config = ConfigDict(
        frozen=True,  # Events are immutable
        extra="forbid",
    )

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Ensure concrete event classes define event_type."""
        super().__init_subclass__(**kwargs)
        if cls.event_type == "domain.event":
            msg = f"{cls.__name__} must define 'event_type' class variable"
            raise TypeError(msg)

    @classmethod
    def get_event_type(cls) -> str:
        """Get the event type identifier."""
        return cls.event_type

    @classmethod
    def get_qualified_type(cls) -> str:
        """Event type with version, e.g. "tree.deleted:v1"."""
        return f"{cls.event_type}:v{cls.event_version}"

    def with_metadata(self, **kwargs: Any) -> DomainEvent:
        """Create a copy of this event with additional metadata."""
        return self.model_copy(update={"metadata": {**self.metadata, **kwargs}})


__all__ = ["DomainEvent"]
