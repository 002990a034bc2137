"""Modular Pydantic Settings v2 configuration.

Settings are split by domain (nested-set engine, database, logging), each
with its own environment prefix and optional YAML/conf.d source:

    from nesty_service.core.settings import get_nested_set_settings

    columns = get_nested_set_settings().to_columns()

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. YAML/conf.d files (optional, local/dev)
    3. Environment variables (production)
    4. .env file (development only)
    5. secrets_dir (Kubernetes/Docker secrets)
"""

from __future__ import annotations

from .database import DatabaseSettings
from .loader import get_db_settings, get_logging_settings, get_nested_set_settings
from .logs import LoggingSettings
from .nested_set import NestedSetSettings

__all__ = [
    "DatabaseSettings",
    "LoggingSettings",
    "NestedSetSettings",
    "get_db_settings",
    "get_logging_settings",
    "get_nested_set_settings",
]
