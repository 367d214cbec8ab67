"""
Settings for featureguard.

This module provides the settings class read from the environment (or a
.env file). Settings cover logging, the storage backend and the default role
assigned at registration.
"""

from typing import Literal, Optional, Union

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

from featureguard.config.storage import (
    DocumentStoreConfig,
    RelationalStoreConfig,
    resolve_storage_config,
)


class FeatureGuardSettings(BaseSettings):
    """
    Settings class for featureguard.

    Attributes:
        APP_NAME: Name of the logger shared by components from create_featureguard
        DEBUG: Flag to enable/disable debug logging
        LOG_LEVEL: Log level used when DEBUG is off
        LOG_JSON: Emit JSON formatted logs
        STORAGE_TYPE: Storage backend, "document" or "relational"
        STORAGE_URL: Connection URL for the storage backend
        STORAGE_DATABASE: Database name for the document store
        DB_ECHO: Enable SQL query logging (echo)
        DB_POOL_SIZE: Connection pool size for the relational store
        DEFAULT_ROLE: Role given to users registered through create_featureguard's service
    """

    APP_NAME: str = Field(default="featureguard")
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    LOG_JSON: bool = Field(default=False, description="Emit JSON formatted logs")

    # Storage configuration
    STORAGE_TYPE: Literal["document", "relational"] = Field(
        default="relational", description="Storage backend type"
    )
    STORAGE_URL: str = Field(
        default="sqlite+aiosqlite:///./featureguard.db",
        description="Storage connection URL",
    )
    STORAGE_DATABASE: str = Field(
        default="featureguard", description="Document store database name"
    )
    DB_ECHO: bool = Field(default=False, description="Enable SQL query logging (echo)")
    DB_POOL_SIZE: int = Field(
        default=5, description="Connection pool size for the relational store"
    )

    # Registration
    DEFAULT_ROLE: Optional[str] = Field(
        default=None, description="Role assigned to newly registered users"
    )

    @field_validator("LOG_LEVEL", mode="before")
    def normalize_log_level(cls, value):
        """Accept log levels in any case."""
        if isinstance(value, str):
            value = value.upper()
            if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
                raise ValueError(f"Unknown LOG_LEVEL: {value}")
        return value

    @field_validator("DEFAULT_ROLE", mode="before")
    def blank_default_role_is_none(cls, value):
        """Treat an empty DEFAULT_ROLE as unset."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def storage_config(self) -> Union[DocumentStoreConfig, RelationalStoreConfig]:
        """
        Build the tagged storage configuration from these settings.

        Raises:
            ConfigurationError: If STORAGE_URL does not suit STORAGE_TYPE
        """
        if self.STORAGE_TYPE == "document":
            raw = {
                "type": "document",
                "connection": self.STORAGE_URL,
                "database": self.STORAGE_DATABASE,
            }
        else:
            raw = {
                "type": "relational",
                "connection": self.STORAGE_URL,
                "echo": self.DB_ECHO,
                "pool_size": self.DB_POOL_SIZE,
            }
        return resolve_storage_config(raw)

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")
