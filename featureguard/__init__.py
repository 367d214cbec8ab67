"""
featureguard - Feature-based role access control with pluggable storage.

This package provides a role/feature/permission graph persisted on MongoDB
or a SQL database, an authorization engine that decides access from a
user's role grants, and a service for mutating the graph.

Usage:
    from featureguard import AuthorizationEngine, RoleGraphService, create_adapter

    adapter = create_adapter({"type": "relational", "connection": "sqlite+aiosqlite://"})
    await adapter.init()
    engine = AuthorizationEngine(adapter)
    service = RoleGraphService(adapter)
"""

__version__ = "0.1.0"

# Public API exports
from featureguard.authorization import (
    AuthorizationEngine,
    Decision,
    DenyReason,
    Identity,
    infer_feature_permission,
)
from featureguard.config import (
    DocumentStoreConfig,
    FeatureGuardSettings,
    RelationalStoreConfig,
    get_settings,
)
from featureguard.db import (
    DocumentStoreAdapter,
    RelationalStoreAdapter,
    StorageAdapter,
    create_adapter,
)
from featureguard.errors import AppError
from featureguard.factory import FeatureGuard, create_featureguard
from featureguard.logging import get_logger
from featureguard.services import CallbackObserver, RBACObserver, RoleGraphService
