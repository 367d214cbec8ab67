"""
Configuration module for featureguard.

This module provides:
- FeatureGuardSettings: settings loaded from environment variables or .env.
- The tagged storage configurations and their resolver.
- get_settings: factory building a fresh settings object.

Example environment variables:

LOG_LEVEL="INFO"
LOG_JSON=false

STORAGE_TYPE="relational"  # Options: relational, document
STORAGE_URL="postgresql+asyncpg://<username>:<password>@<host>:<port>/<database_name>"
# STORAGE_TYPE="document"
# STORAGE_URL="mongodb://localhost:27017"
# STORAGE_DATABASE="featureguard"
DB_ECHO=false
DB_POOL_SIZE=5

DEFAULT_ROLE="viewer"
"""

from featureguard.config.base import FeatureGuardSettings
from featureguard.config.storage import (
    DocumentStoreConfig,
    RelationalStoreConfig,
    StorageConfig,
    resolve_storage_config,
)


def get_settings() -> FeatureGuardSettings:
    """
    Load settings from the environment.

    A new object is returned on every call; callers keep and inject it.
    """
    return FeatureGuardSettings()


__all__ = [
    "FeatureGuardSettings",
    "get_settings",
    "DocumentStoreConfig",
    "RelationalStoreConfig",
    "StorageConfig",
    "resolve_storage_config",
]
