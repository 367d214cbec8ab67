"""
Storage layer for featureguard.

This module provides:
- StorageAdapter: the contract every backend implements.
- DocumentStoreAdapter: MongoDB through Motor.
- RelationalStoreAdapter: PostgreSQL or SQLite through async SQLAlchemy.
- create_adapter: builds the adapter selected by a tagged configuration.
"""

from featureguard.db.adapter import DEFAULT_PAGE_SIZE, StorageAdapter
from featureguard.db.document import DocumentStoreAdapter
from featureguard.db.engine import create_engine
from featureguard.db.factory import create_adapter
from featureguard.db.relational import RelationalStoreAdapter

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "StorageAdapter",
    "DocumentStoreAdapter",
    "RelationalStoreAdapter",
    "create_adapter",
    "create_engine",
]
