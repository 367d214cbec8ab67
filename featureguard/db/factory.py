"""
Storage adapter construction from a tagged configuration.
"""

from typing import Any, Mapping, Optional, Union

from motor.motor_asyncio import AsyncIOMotorClient

from featureguard.config.storage import (
    DocumentStoreConfig,
    RelationalStoreConfig,
    resolve_storage_config,
)
from featureguard.db.adapter import StorageAdapter
from featureguard.db.document import DocumentStoreAdapter
from featureguard.db.engine import create_engine
from featureguard.db.relational import RelationalStoreAdapter
from featureguard.logging import Logger, ensure_logger


def create_adapter(
    config: Union[DocumentStoreConfig, RelationalStoreConfig, Mapping[str, Any]],
    logger: Optional[Logger] = None,
) -> StorageAdapter:
    """
    Build the storage adapter selected by ``config.type``.

    The adapter is returned unopened; call ``await adapter.init()`` before use
    and ``await adapter.close()`` on shutdown.

    Args:
        config: A tagged storage config, or a mapping validated into one
        logger: Optional logger shared with the adapter

    Raises:
        ConfigurationError: If the configuration matches no supported backend
    """
    log = ensure_logger(logger, __name__)
    resolved = resolve_storage_config(config)

    if isinstance(resolved, DocumentStoreConfig):
        log.debug(f"Using document store database={resolved.database}")
        client = AsyncIOMotorClient(resolved.connection)
        return DocumentStoreAdapter(client[resolved.database], logger=log, client=client)

    log.debug("Using relational store")
    return RelationalStoreAdapter(create_engine(resolved, log), logger=log)
