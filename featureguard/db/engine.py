"""
Async engine construction for the relational store.
"""

from typing import Any, Dict, Optional

from sqlalchemy import event
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from featureguard.config.storage import RelationalStoreConfig
from featureguard.logging import Logger, ensure_logger


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(
    config: RelationalStoreConfig, logger: Optional[Logger] = None
) -> AsyncEngine:
    """
    Create an AsyncEngine for the configured database.

    SQLite connections get foreign key enforcement switched on, and an
    in-memory SQLite database is pinned to a single shared connection so
    every session sees the same data.

    Args:
        config: Relational store settings
        logger: Optional logger for database operations

    Returns:
        The configured AsyncEngine
    """
    log = ensure_logger(logger, __name__)

    url = make_url(config.connection)
    log.debug(f"Creating database engine for backend: {url.get_backend_name()}")

    engine_kwargs: Dict[str, Any] = {"echo": config.echo}
    is_sqlite = url.get_backend_name() == "sqlite"
    if is_sqlite:
        if url.database in (None, "", ":memory:"):
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        # Only pass pool_size if not using SQLite
        engine_kwargs["pool_size"] = config.pool_size

    engine = create_async_engine(config.connection, **engine_kwargs)

    if is_sqlite:
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    log.debug("Database engine initialized")
    return engine
