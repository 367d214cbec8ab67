"""
Storage adapter contract tests, run against every backend.

Covers:
- Bootstrap of the standard permissions and its idempotence
- CRUD for users, roles, features and permissions
- Uniqueness enforcement and NotFound handling
- Grant replacement (full replace, validation, empty grants)
- Cascading, idempotent feature and permission deletes
- Role deletion rejected while assigned
- Listing windows, search, ordering and usage counts
- Aggregate reads (get_feature_permissions, get_counts)
- Concurrent operations keep every committed write
"""

import asyncio

import pytest

from featureguard.errors.exceptions import ConflictError, NotFoundError, ValidationError
from featureguard.models.entities import STANDARD_PERMISSIONS, FeatureGrant
from featureguard.models.schemas import (
    FeatureCreate,
    FeatureUpdate,
    PermissionCreate,
    PermissionUpdate,
    RoleCreate,
    RoleUpdate,
    UserCreate,
    UserUpdate,
)

STANDARD_NAMES = {name for name, _ in STANDARD_PERMISSIONS}


# Bootstrap


@pytest.mark.asyncio
async def test_init_creates_standard_permissions(adapter):
    page = await adapter.list_permissions()
    assert page.total == 5
    assert {p.name for p in page.items} == STANDARD_NAMES
    sudo = await adapter.find_permission_by_name("sudo")
    assert sudo.description == "Full administrative access"


@pytest.mark.asyncio
async def test_bootstrap_is_idempotent(adapter):
    for _ in range(3):
        await adapter.bootstrap_standard_permissions()
    page = await adapter.list_permissions()
    assert page.total == 5
    assert sorted(p.name for p in page.items) == sorted(STANDARD_NAMES)


@pytest.mark.asyncio
async def test_bootstrap_restores_a_missing_permission(adapter):
    sudo = await adapter.find_permission_by_name("sudo")
    assert await adapter.delete_permission(sudo.id) is True
    await adapter.bootstrap_standard_permissions()
    assert (await adapter.get_counts()).permissions == 5


# Users


@pytest.mark.asyncio
async def test_user_lifecycle(adapter):
    user = await adapter.create_user(UserCreate(user_id="alice", name="Alice"))
    assert user.id
    assert user.email is None
    assert user.role_id is None

    found = await adapter.find_user_by_user_id("alice")
    assert found.id == user.id
    assert found.name == "Alice"

    updated = await adapter.update_user("alice", UserUpdate(email="alice@example.com"))
    assert updated.email == "alice@example.com"
    assert updated.name == "Alice"

    cleared = await adapter.update_user("alice", UserUpdate(email=None))
    assert cleared.email is None

    await adapter.delete_user("alice")
    assert await adapter.find_user_by_user_id("alice") is None


@pytest.mark.asyncio
async def test_missing_user_lookups(adapter):
    assert await adapter.find_user_by_user_id("ghost") is None
    assert await adapter.find_user_by_user_id_with_role("ghost") is None
    with pytest.raises(NotFoundError):
        await adapter.update_user("ghost", UserUpdate(name="Ghost"))
    with pytest.raises(NotFoundError):
        await adapter.delete_user("ghost")


@pytest.mark.asyncio
async def test_user_uniqueness(adapter):
    await adapter.create_user(UserCreate(user_id="alice", email="a@example.com"))
    with pytest.raises(ConflictError):
        await adapter.create_user(UserCreate(user_id="alice"))
    with pytest.raises(ConflictError):
        await adapter.create_user(UserCreate(user_id="alice2", email="a@example.com"))

    await adapter.create_user(UserCreate(user_id="bob", email="b@example.com"))
    with pytest.raises(ConflictError):
        await adapter.update_user("bob", UserUpdate(email="a@example.com"))


@pytest.mark.asyncio
async def test_users_without_email_do_not_collide(adapter):
    await adapter.create_user(UserCreate(user_id="u1"))
    await adapter.create_user(UserCreate(user_id="u2"))
    await adapter.create_user(UserCreate(user_id="u3", email=""))
    assert (await adapter.get_counts()).users == 3


@pytest.mark.asyncio
async def test_user_role_reference_must_exist(adapter):
    with pytest.raises(NotFoundError):
        await adapter.create_user(UserCreate(user_id="alice", role_id="missing-role"))
    await adapter.create_user(UserCreate(user_id="alice"))
    with pytest.raises(NotFoundError):
        await adapter.update_user("alice", UserUpdate(role_id="missing-role"))


@pytest.mark.asyncio
async def test_update_user_sets_and_clears_role(adapter):
    role = await adapter.create_role(RoleCreate(name="viewer"))
    await adapter.create_user(UserCreate(user_id="alice"))
    assigned = await adapter.update_user("alice", UserUpdate(role_id=role.id))
    assert assigned.role_id == role.id
    renamed = await adapter.update_user("alice", UserUpdate(name="Alice"))
    assert renamed.role_id == role.id
    cleared = await adapter.update_user("alice", UserUpdate(role_id=None))
    assert cleared.role_id is None


@pytest.mark.asyncio
async def test_user_with_role_resolves_grants(adapter, billing_graph):
    user = await adapter.find_user_by_user_id_with_role("alice")
    assert user.role.name == "manager"
    [grant] = user.role.grants
    assert grant.feature.name == "billing"
    assert grant.permission_names == {"read", "create"}


# Roles


@pytest.mark.asyncio
async def test_role_lifecycle(adapter):
    role = await adapter.create_role(RoleCreate(name="viewer", description="Read only"))
    assert role.grants == []
    assert (await adapter.find_role_by_name("viewer")).id == role.id
    assert (await adapter.find_role_by_id(role.id)).description == "Read only"

    updated = await adapter.update_role(role.id, RoleUpdate(name="reader"))
    assert updated.name == "reader"
    assert updated.description == "Read only"
    assert await adapter.find_role_by_name("viewer") is None

    await adapter.delete_role(role.id)
    assert await adapter.find_role_by_id(role.id) is None
    assert await adapter.find_role_by_id_with_grants(role.id) is None


@pytest.mark.asyncio
async def test_role_name_conflicts(adapter):
    await adapter.create_role(RoleCreate(name="viewer"))
    other = await adapter.create_role(RoleCreate(name="editor"))
    with pytest.raises(ConflictError):
        await adapter.create_role(RoleCreate(name="viewer"))
    with pytest.raises(ConflictError):
        await adapter.update_role(other.id, RoleUpdate(name="viewer"))


@pytest.mark.asyncio
@pytest.mark.parametrize("role_id", ["missing", "000000000000000000000000"])
async def test_missing_role_operations(adapter, role_id):
    assert await adapter.find_role_by_id(role_id) is None
    with pytest.raises(NotFoundError):
        await adapter.update_role(role_id, RoleUpdate(name="x"))
    with pytest.raises(NotFoundError):
        await adapter.delete_role(role_id)
    with pytest.raises(NotFoundError):
        await adapter.replace_role_grants(role_id, [])


@pytest.mark.asyncio
async def test_create_role_with_unknown_references(adapter):
    read = await adapter.find_permission_by_name("read")
    billing = await adapter.create_feature(FeatureCreate(name="billing"))
    with pytest.raises(NotFoundError):
        await adapter.create_role(
            RoleCreate(name="r1", grants=[FeatureGrant(feature_id="nope", permission_ids={read.id})])
        )
    with pytest.raises(NotFoundError):
        await adapter.create_role(
            RoleCreate(
                name="r2", grants=[FeatureGrant(feature_id=billing.id, permission_ids={"nope"})]
            )
        )
    assert await adapter.find_role_by_name("r1") is None
    assert await adapter.find_role_by_name("r2") is None


@pytest.mark.asyncio
async def test_delete_role_rejected_while_assigned(adapter, billing_graph):
    manager = billing_graph["manager"]
    with pytest.raises(ConflictError):
        await adapter.delete_role(manager.id)

    # Nothing changed
    user = await adapter.find_user_by_user_id_with_role("alice")
    assert user.role_id == manager.id
    assert user.role.grant_for("billing") is not None

    await adapter.update_user("alice", UserUpdate(role_id=None))
    await adapter.delete_role(manager.id)
    assert await adapter.find_role_by_id(manager.id) is None
    assert (await adapter.list_features()).items[0].role_count == 0


# Grants


@pytest.mark.asyncio
async def test_replace_role_grants_replaces(adapter, billing_graph):
    manager, billing, read = (billing_graph[k] for k in ("manager", "billing", "read"))
    await adapter.replace_role_grants(
        manager.id, [FeatureGrant(feature_id=billing.id, permission_ids={read.id})]
    )
    assert await adapter.get_feature_permissions("alice", "billing") == {"read"}

    role = await adapter.find_role_by_id(manager.id)
    assert role.grants == [FeatureGrant(feature_id=billing.id, permission_ids={read.id})]


@pytest.mark.asyncio
async def test_replace_role_grants_drops_unlisted_and_empty_features(adapter, billing_graph):
    manager, billing, read = (billing_graph[k] for k in ("manager", "billing", "read"))
    reports = await adapter.create_feature(FeatureCreate(name="reports"))
    await adapter.replace_role_grants(
        manager.id,
        [
            FeatureGrant(feature_id=reports.id, permission_ids={read.id}),
            FeatureGrant(feature_id=billing.id, permission_ids=set()),
        ],
    )
    role = await adapter.find_role_by_id_with_grants(manager.id)
    assert [g.feature.name for g in role.grants] == ["reports"]


@pytest.mark.asyncio
async def test_replace_role_grants_with_nothing(adapter, billing_graph):
    await adapter.replace_role_grants(billing_graph["manager"].id, [])
    role = await adapter.find_role_by_id_with_grants(billing_graph["manager"].id)
    assert role.grants == []


@pytest.mark.asyncio
async def test_replace_role_grants_validation_leaves_grants_alone(adapter, billing_graph):
    manager, billing, read = (billing_graph[k] for k in ("manager", "billing", "read"))
    with pytest.raises(ValidationError):
        await adapter.replace_role_grants(
            manager.id,
            [
                FeatureGrant(feature_id=billing.id, permission_ids={read.id}),
                FeatureGrant(feature_id=billing.id, permission_ids={read.id}),
            ],
        )
    with pytest.raises(NotFoundError):
        await adapter.replace_role_grants(
            manager.id, [FeatureGrant(feature_id=billing.id, permission_ids={"missing"})]
        )
    assert await adapter.get_feature_permissions("alice", "billing") == {"read", "create"}


# Features and permissions


@pytest.mark.asyncio
async def test_feature_lifecycle(adapter):
    feature = await adapter.create_feature(FeatureCreate(name="billing", description="Invoices"))
    assert (await adapter.find_feature_by_name("billing")).id == feature.id
    assert (await adapter.find_feature_by_id(feature.id)).description == "Invoices"

    updated = await adapter.update_feature(feature.id, FeatureUpdate(description="Payments"))
    assert updated.name == "billing"
    assert updated.description == "Payments"

    with pytest.raises(ConflictError):
        await adapter.create_feature(FeatureCreate(name="billing"))
    other = await adapter.create_feature(FeatureCreate(name="reports"))
    with pytest.raises(ConflictError):
        await adapter.update_feature(other.id, FeatureUpdate(name="billing"))
    with pytest.raises(NotFoundError):
        await adapter.update_feature("missing", FeatureUpdate(name="x"))
    assert await adapter.find_feature_by_id("missing") is None


@pytest.mark.asyncio
async def test_permission_lifecycle(adapter):
    export = await adapter.create_permission(PermissionCreate(name="export"))
    assert (await adapter.find_permission_by_id(export.id)).name == "export"
    renamed = await adapter.update_permission(export.id, PermissionUpdate(name="download"))
    assert renamed.name == "download"
    assert await adapter.find_permission_by_name("export") is None

    with pytest.raises(ConflictError):
        await adapter.create_permission(PermissionCreate(name="read"))
    with pytest.raises(ConflictError):
        await adapter.update_permission(export.id, PermissionUpdate(name="read"))
    with pytest.raises(NotFoundError):
        await adapter.update_permission("missing", PermissionUpdate(name="x"))


@pytest.mark.asyncio
async def test_delete_feature_cascades_and_is_idempotent(adapter, billing_graph):
    billing = billing_graph["billing"]
    assert await adapter.delete_feature(billing.id) is True
    assert await adapter.find_feature_by_id(billing.id) is None
    role = await adapter.find_role_by_id(billing_graph["manager"].id)
    assert role.grants == []

    assert await adapter.delete_feature(billing.id) is False
    assert await adapter.delete_feature("missing") is False


@pytest.mark.asyncio
async def test_delete_permission_cascades_and_is_idempotent(adapter, billing_graph):
    create = billing_graph["create"]
    assert await adapter.delete_permission(create.id) is True
    assert await adapter.get_feature_permissions("alice", "billing") == {"read"}
    assert await adapter.delete_permission(create.id) is False

    # Removing the last permission removes the grant
    assert await adapter.delete_permission(billing_graph["read"].id) is True
    role = await adapter.find_role_by_id_with_grants(billing_graph["manager"].id)
    assert role.grants == []


# Listings and aggregates


@pytest.mark.asyncio
async def test_list_users_window_and_order(adapter):
    for index in range(5):
        await adapter.create_user(UserCreate(user_id=f"user{index}"))

    page = await adapter.list_users(limit=2, offset=1)
    assert page.total == 5
    assert [u.user_id for u in page.items] == ["user3", "user2"]

    empty = await adapter.list_users(limit=0)
    assert empty.items == []
    assert empty.total == 5

    beyond = await adapter.list_users(limit=10, offset=10)
    assert beyond.items == []
    assert beyond.total == 5

    with pytest.raises(ValidationError):
        await adapter.list_users(limit=-1)


@pytest.mark.asyncio
async def test_list_users_search(adapter):
    await adapter.create_user(UserCreate(user_id="alice", name="Alice Smith", email="a@corp.io"))
    await adapter.create_user(UserCreate(user_id="bob", name="Bob", email="bob@home.net"))
    await adapter.create_user(UserCreate(user_id="carol", name="Carol (admin)"))

    assert {u.user_id for u in (await adapter.list_users(search="SMITH")).items} == {"alice"}
    assert {u.user_id for u in (await adapter.list_users(search="home")).items} == {"bob"}
    matches = (await adapter.list_users(search="c")).items
    assert {u.user_id for u in matches} == {"alice", "carol"}

    # Matched literally
    literal = await adapter.list_users(search="(admin)")
    assert [u.user_id for u in literal.items] == ["carol"]
    assert (await adapter.list_users(search=".*")).total == 0
    assert (await adapter.list_users(search="%")).total == 0

    assert (await adapter.list_users(search="")).total == 3


@pytest.mark.asyncio
async def test_listing_usage_counts(adapter, billing_graph):
    await adapter.create_role(RoleCreate(name="empty"))
    roles = {r.name: r for r in (await adapter.list_roles()).items}
    assert roles["manager"].user_count == 1
    assert roles["manager"].feature_count == 1
    assert roles["empty"].user_count == 0

    [feature] = (await adapter.list_features()).items
    assert feature.role_count == 1

    permissions = {p.name: p.role_count for p in (await adapter.list_permissions()).items}
    assert permissions == {"read": 1, "create": 1, "update": 0, "delete": 0, "sudo": 0}


@pytest.mark.asyncio
async def test_get_feature_permissions(adapter, billing_graph):
    assert await adapter.get_feature_permissions("alice", "billing") == {"read", "create"}
    assert await adapter.get_feature_permissions("alice", "reports") == set()
    assert await adapter.get_feature_permissions("ghost", "billing") == set()
    await adapter.create_user(UserCreate(user_id="norole"))
    assert await adapter.get_feature_permissions("norole", "billing") == set()


@pytest.mark.asyncio
async def test_get_counts(adapter, billing_graph):
    counts = await adapter.get_counts()
    assert (counts.users, counts.roles, counts.features, counts.permissions) == (1, 1, 1, 5)


# Concurrency


@pytest.mark.asyncio
async def test_concurrent_creates_are_all_persisted(adapter):
    created = await asyncio.gather(
        *(adapter.create_feature(FeatureCreate(name=f"feature-{i}")) for i in range(30))
    )
    assert len({feature.id for feature in created}) == 30
    assert (await adapter.get_counts()).features == 30


@pytest.mark.asyncio
async def test_failing_creates_do_not_discard_concurrent_writes(adapter):
    await adapter.create_feature(FeatureCreate(name="billing"))
    results = await asyncio.gather(
        *(adapter.create_feature(FeatureCreate(name=f"g{i}")) for i in range(10)),
        *(adapter.create_feature(FeatureCreate(name="billing")) for _ in range(5)),
        return_exceptions=True,
    )
    assert all(not isinstance(r, Exception) for r in results[:10])
    assert all(isinstance(r, ConflictError) for r in results[10:])

    page = await adapter.list_features(limit=50)
    assert {f.name for f in page.items} == {"billing"} | {f"g{i}" for i in range(10)}
