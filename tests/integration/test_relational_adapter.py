"""
Relational adapter tests that depend on SQL transactions and constraints.

Covers:
- A failing grant replacement rolls back and keeps the previous grants
- IntegrityError is reported as ConflictError when pre-checks are bypassed
- Foreign keys are enforced on SQLite
- Driver errors surface as DBError
- Role deletion removes its junction rows
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from featureguard.db.tables import RoleFeaturePermission
from featureguard.errors.exceptions import ConflictError, DBError
from featureguard.models.entities import FeatureGrant
from featureguard.models.schemas import FeatureCreate, RoleCreate


@pytest.fixture
def adapter(relational_adapter):
    return relational_adapter


async def _junction_rows(adapter, role_id):
    async with adapter.transaction() as session:
        stmt = (
            select(func.count())
            .select_from(RoleFeaturePermission)
            .where(RoleFeaturePermission.role_id == role_id)
        )
        return (await session.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_failed_grant_replacement_rolls_back(adapter, billing_graph):
    manager, billing, read = (billing_graph[k] for k in ("manager", "billing", "read"))

    with patch.object(adapter, "_write_grants", side_effect=SQLAlchemyError("boom")):
        with pytest.raises(DBError):
            await adapter.replace_role_grants(
                manager.id, [FeatureGrant(feature_id=billing.id, permission_ids={read.id})]
            )

    role = await adapter.find_role_by_id_with_grants(manager.id)
    assert role.grant_for("billing").permission_names == {"read", "create"}
    assert await _junction_rows(adapter, manager.id) == 2


@pytest.mark.asyncio
async def test_integrity_error_becomes_conflict(adapter):
    await adapter.create_feature(FeatureCreate(name="billing"))
    with patch.object(adapter, "_ensure_unique_name", AsyncMock(return_value=None)):
        with pytest.raises(ConflictError) as exc:
            await adapter.create_feature(FeatureCreate(name="billing"))
    assert exc.value.status_code == 409
    assert (await adapter.list_features()).total == 1


@pytest.mark.asyncio
async def test_foreign_keys_are_enforced(adapter, billing_graph):
    with pytest.raises(ConflictError):
        async with adapter.transaction() as session:
            session.add(
                RoleFeaturePermission(
                    role_id="no-such-role",
                    feature_id=billing_graph["billing"].id,
                    permission_id=billing_graph["read"].id,
                )
            )


@pytest.mark.asyncio
async def test_driver_errors_become_db_errors(adapter):
    failure = OperationalError("SELECT 1", {}, Exception("database is locked"))
    with patch.object(adapter, "_scalar_by", AsyncMock(side_effect=failure)):
        with pytest.raises(DBError) as exc:
            await adapter.find_feature_by_name("billing")
    assert exc.value.status_code == 500
    assert isinstance(exc.value.__cause__, OperationalError)


@pytest.mark.asyncio
async def test_delete_role_removes_junction_rows(adapter, billing_graph):
    billing, read = billing_graph["billing"], billing_graph["read"]
    viewer = await adapter.create_role(
        RoleCreate(
            name="viewer",
            grants=[FeatureGrant(feature_id=billing.id, permission_ids={read.id})],
        )
    )
    assert await _junction_rows(adapter, viewer.id) == 1

    await adapter.delete_role(viewer.id)
    assert await _junction_rows(adapter, viewer.id) == 0
    assert await _junction_rows(adapter, billing_graph["manager"].id) == 2
