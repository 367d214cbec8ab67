import uuid
from typing import AsyncIterator

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from featureguard.config.storage import RelationalStoreConfig
from featureguard.db.adapter import StorageAdapter
from featureguard.db.document import DocumentStoreAdapter
from featureguard.db.engine import create_engine
from featureguard.db.relational import RelationalStoreAdapter
from featureguard.models.entities import FeatureGrant
from featureguard.models.schemas import FeatureCreate, RoleCreate, UserCreate
from featureguard.services.graph import RoleGraphService

IN_MEMORY_SQLITE = "sqlite+aiosqlite:///:memory:"


def _database_name() -> str:
    # mongomock clients may share storage, so each test gets its own database
    return f"featureguard_{uuid.uuid4().hex}"


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    # Keep host settings out of FeatureGuardSettings
    for name in (
        "APP_NAME",
        "DEBUG",
        "LOG_LEVEL",
        "LOG_JSON",
        "STORAGE_TYPE",
        "STORAGE_URL",
        "STORAGE_DATABASE",
        "DB_ECHO",
        "DB_POOL_SIZE",
        "DEFAULT_ROLE",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest_asyncio.fixture
async def relational_adapter() -> AsyncIterator[RelationalStoreAdapter]:
    """Relational adapter on a fresh in-memory SQLite database."""
    config = RelationalStoreConfig(type="relational", connection=IN_MEMORY_SQLITE)
    adapter = RelationalStoreAdapter(create_engine(config))
    await adapter.init()
    try:
        yield adapter
    finally:
        await adapter.close()


@pytest_asyncio.fixture
async def document_adapter() -> AsyncIterator[DocumentStoreAdapter]:
    """Document adapter on a fresh mongomock database."""
    client = AsyncMongoMockClient()
    adapter = DocumentStoreAdapter(client[_database_name()])
    await adapter.init()
    yield adapter


@pytest_asyncio.fixture(params=["relational", "document"])
async def adapter(request) -> AsyncIterator[StorageAdapter]:
    """Every backend in turn, initialized with the standard permissions."""
    if request.param == "relational":
        config = RelationalStoreConfig(type="relational", connection=IN_MEMORY_SQLITE)
        backend = RelationalStoreAdapter(create_engine(config))
    else:
        backend = DocumentStoreAdapter(AsyncMongoMockClient()[_database_name()])
    await backend.init()
    try:
        yield backend
    finally:
        await backend.close()


@pytest.fixture
def service(adapter) -> RoleGraphService:
    return RoleGraphService(adapter)


@pytest_asyncio.fixture
async def billing_graph(adapter):
    """
    billing feature, manager role with billing: {read, create}, alice as manager.
    """
    read = await adapter.find_permission_by_name("read")
    create = await adapter.find_permission_by_name("create")
    billing = await adapter.create_feature(FeatureCreate(name="billing"))
    manager = await adapter.create_role(
        RoleCreate(
            name="manager",
            grants=[FeatureGrant(feature_id=billing.id, permission_ids={read.id, create.id})],
        )
    )
    alice = await adapter.create_user(
        UserCreate(user_id="alice", name="Alice", email="alice@example.com", role_id=manager.id)
    )
    return {
        "read": read,
        "create": create,
        "billing": billing,
        "manager": manager,
        "alice": alice,
    }
