"""Database models, exceptions and the nested-set hierarchy."""

from nesty_service.core.database.base import NAMING_CONVENTION, Base, IntegerPKMixin
from nesty_service.core.database.exceptions import (
    InvalidFormatError,
    InvalidMoveError,
    InvalidPositionError,
    InvariantViolationError,
    NestedSetError,
    NodeNotFoundError,
    NodeNotPersistedError,
    NotFoundError,
    PreconditionError,
    RepositoryError,
    RootRequiredError,
    StoreConflictError,
)

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "IntegerPKMixin",
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
