"""Database engine and session plumbing."""

from nesty_service.infra.database.session import (
    close_database,
    create_engine,
    create_session_factory,
    get_async_session,
    init_database,
    install_sqlite_savepoint_support,
)

__all__ = [
    "close_database",
    "create_engine",
    "create_session_factory",
    "get_async_session",
    "init_database",
    "install_sqlite_savepoint_support",
]
