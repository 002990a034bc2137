"""Database and nested-set exceptions.

Custom exceptions for repository and tree operations that carry structured
details and give callers something narrower to catch than raw SQLAlchemy
errors.

Hierarchy:
    RepositoryError
    ├── NotFoundError
    │   └── NodeNotFoundError
    ├── NestedSetError
    │   ├── PreconditionError
    │   │   ├── NodeNotPersistedError
    │   │   ├── InvalidPositionError
    │   │   ├── InvalidFormatError
    │   │   ├── RootRequiredError
    │   │   └── InvalidMoveError
    │   └── InvariantViolationError
    └── StoreConflictError
"""
from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """Base exception for repository operations.

    Raised when a repository operation fails due to programming
    errors, configuration issues, or unexpected states.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize repository error.

        Args:
            message: Error description
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Format error message with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class NotFoundError(RepositoryError):
    """Entity not found in database.

    Attributes:
        model_name: Name of the model class that wasn't found
        identifier: The key/value that was searched for
    """

    def __init__(self, model_name: str, identifier: dict[str, Any]):
        """Initialize not found error.

        Args:
            model_name: Name of the model (e.g., "Category")
            identifier: Key-value pairs used in the search (e.g., {"id": 123})
        """
        self.model_name = model_name
        self.identifier = identifier

        id_str = ", ".join(f"{k}={v!r}" for k, v in identifier.items())
        message = f"{model_name} not found with {id_str}"

        super().__init__(message, details={"model": model_name, **identifier})

    def __repr__(self) -> str:
        """Repr for debugging."""
        return f"{type(self).__name__}(model={self.model_name!r}, identifier={self.identifier!r})"


class NodeNotFoundError(NotFoundError):
    """A tree node key does not exist in the store.

    Raised by reload, lookups by key and the bulk synchronizer. Distinct from
    NodeNotPersistedError, which means the instance was never saved at all.
    """


class NestedSetError(RepositoryError):
    """Base exception for nested-set tree operations."""


class PreconditionError(NestedSetError):
    """A tree operation was called with arguments it cannot accept.

    Always raised before any write, so the store is untouched.
    """


class NodeNotPersistedError(PreconditionError):
    """A node (or reference node) has not been saved yet."""

    def __init__(self, role: str, model_name: str):
        """Initialize error.

        Args:
            role: Which argument was unsaved ("node", "parent", "sibling")
            model_name: Name of the model class
        """
        self.role = role
        super().__init__(
            f"{role} must be persisted before this operation",
            details={"role": role, "model": model_name},
        )


class InvalidPositionError(PreconditionError):
    """Position token is not one the operation accepts."""

    def __init__(self, position: Any, allowed: tuple[str, ...]):
        self.position = position
        self.allowed = allowed
        super().__init__(
            f"Invalid position {position!r}",
            details={"allowed": list(allowed)},
        )


class InvalidFormatError(PreconditionError):
    """Output format token is not one the operation accepts."""

    def __init__(self, fmt: Any, allowed: tuple[str, ...]):
        self.fmt = fmt
        self.allowed = allowed
        super().__init__(
            f"Invalid format {fmt!r}",
            details={"allowed": list(allowed)},
        )


class RootRequiredError(PreconditionError):
    """Operation only applies to a root node but a non-root was given."""

    def __init__(self, operation: str, node_id: Any):
        super().__init__(
            f"{operation} requires a root node",
            details={"operation": operation, "id": node_id},
        )


class InvalidMoveError(PreconditionError):
    """Requested relocation would break the tree shape.

    Examples: moving a node under itself or one of its descendants, or
    giving a root node a sibling.
    """


class InvariantViolationError(NestedSetError):
    """Interval invariants do not hold after (or before) a mutation.

    Fatal: the surrounding transaction is rolled back. Usually means the
    store was already corrupted or was modified concurrently without
    serialization.
    """

    def __init__(self, message: str, tree_id: Any, errors: list[str] | None = None):
        self.tree_id = tree_id
        self.errors = errors or []
        super().__init__(message, details={"tree_id": tree_id, "errors": self.errors})


class StoreConflictError(RepositoryError):
    """The store refused to commit because of a concurrent transaction.

    Retryable: callers may re-run the whole operation. The engine itself
    never retries.
    """

    retryable = True

    def __init__(self, message: str, operation: str | None = None):
        details = {"operation": operation} if operation else {}
        super().__init__(message, details=details)


__all__ = [
    "InvalidFormatError",
    "InvalidMoveError",
    "InvalidPositionError",
    "InvariantViolationError",
    "NestedSetError",
    "NodeNotFoundError",
    "NodeNotPersistedError",
    "NotFoundError",
    "PreconditionError",
    "RepositoryError",
    "RootRequiredError",
    "StoreConflictError",
]
