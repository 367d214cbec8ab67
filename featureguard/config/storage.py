"""
Storage backend configuration.

The backend is selected by an explicit ``type`` tag. A configuration is
resolved once, when the adapter is built; anything that does not match one
of the tagged shapes exactly (unknown type, missing type, stray keys such as
a legacy ``db`` field) is rejected instead of guessed at.
"""

from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from featureguard.errors.exceptions import ConfigurationError

_SYNC_RELATIONAL_PREFIXES = ("postgresql://", "postgres://", "sqlite://")
_DOCUMENT_PREFIXES = ("mongodb://", "mongodb+srv://")


class DocumentStoreConfig(BaseModel):
    """
    MongoDB connection settings.

    Attributes:
        type: Always "document"
        connection: MongoDB connection URI
        database: Database holding the featureguard collections
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["document"]
    connection: str
    database: str = "featureguard"

    @field_validator("connection")
    def validate_connection(cls, value):
        """Ensure the connection string is a MongoDB URI."""
        if not value.startswith(_DOCUMENT_PREFIXES):
            raise ValueError(
                "Document store connection must start with 'mongodb://' or "
                f"'mongodb+srv://'. You provided: {value}"
            )
        return value


class RelationalStoreConfig(BaseModel):
    """
    SQL database connection settings.

    Attributes:
        type: Always "relational"
        connection: SQLAlchemy URL using an async driver
        echo: Enable SQL query logging (echo)
        pool_size: Connection pool size (ignored for SQLite)
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["relational"]
    connection: str
    echo: bool = False
    pool_size: int = Field(default=5, ge=1)

    @field_validator("connection")
    def validate_connection(cls, value):
        """
        Ensure the URL names an async driver such as asyncpg or aiosqlite.
        """
        if value.startswith(_SYNC_RELATIONAL_PREFIXES):
            raise ValueError(
                "Relational store connection must use an async driver, e.g. "
                "'postgresql+asyncpg://' or 'sqlite+aiosqlite://'. "
                f"You provided: {value}"
            )
        return value


StorageConfig = Annotated[
    Union[DocumentStoreConfig, RelationalStoreConfig], Field(discriminator="type")
]

_storage_config_adapter: TypeAdapter = TypeAdapter(StorageConfig)


def resolve_storage_config(
    value: Union[DocumentStoreConfig, RelationalStoreConfig, Mapping[str, Any]]
) -> Union[DocumentStoreConfig, RelationalStoreConfig]:
    """
    Validate a raw mapping into one of the tagged storage configurations.

    Args:
        value: A config object or a mapping with a ``type`` key

    Returns:
        The resolved DocumentStoreConfig or RelationalStoreConfig

    Raises:
        ConfigurationError: If the mapping matches no supported backend
    """
    if isinstance(value, (DocumentStoreConfig, RelationalStoreConfig)):
        return value

    try:
        return _storage_config_adapter.validate_python(value)
    except PydanticValidationError as e:
        raise ConfigurationError(
            message="Unsupported storage configuration",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e
