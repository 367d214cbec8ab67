"""
Document storage adapter built on Motor.

Each entity type lives in its own collection. A role document embeds its
grants as ``[{feature_id, permission_ids: [...]}]`` with ObjectId values,
and ids are converted to strings before anything leaves the adapter.

There is no cross-document transaction: a cascading feature or permission
delete rewrites each referencing role with its own update and removes the
entity last, so an interrupted cascade can be completed by running the
same delete again.

Role deletion has a similar gap. The check for assigned users and the
delete are separate calls, so a user assigned in between keeps the id of a
role that no longer exists. Such a user resolves with no role and is denied
with NO_ROLE. The relational store closes this gap with an ON DELETE
RESTRICT foreign key.
"""

import re
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from featureguard.db.adapter import (
    DEFAULT_PAGE_SIZE,
    StorageAdapter,
    check_window,
    normalize_grants,
)
from featureguard.errors.exceptions import AppError, ConflictError, DBError, NotFoundError
from featureguard.logging import Logger, ensure_logger
from featureguard.models.entities import (
    STANDARD_PERMISSIONS,
    Counts,
    Feature,
    FeatureGrant,
    FeatureSummary,
    Id,
    Page,
    Permission,
    PermissionSummary,
    ResolvedGrant,
    Role,
    RoleSummary,
    RoleWithGrants,
    User,
    UserWithRole,
)
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

Document = Mapping[str, Any]

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Optional[Id]) -> Optional[ObjectId]:
    """Parse an id, returning None for anything that is not an ObjectId."""
    if value is None or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def _to_permission(doc: Document) -> Permission:
    return Permission(
        id=str(doc["_id"]),
        name=doc["name"],
        description=doc.get("description", ""),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def _to_feature(doc: Document) -> Feature:
    return Feature(
        id=str(doc["_id"]),
        name=doc["name"],
        description=doc.get("description", ""),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def _to_grants(docs: Iterable[Document]) -> List[FeatureGrant]:
    return [
        FeatureGrant(
            feature_id=str(grant["feature_id"]),
            permission_ids={str(pid) for pid in grant.get("permission_ids", [])},
        )
        for grant in docs
    ]


def _to_role(doc: Document) -> Role:
    return Role(
        id=str(doc["_id"]),
        name=doc["name"],
        description=doc.get("description", ""),
        grants=_to_grants(doc.get("grants", [])),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def _to_user(doc: Document) -> User:
    role_id = doc.get("role_id")
    return User(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        name=doc.get("name", ""),
        email=doc.get("email"),
        role_id=str(role_id) if role_id is not None else None,
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


class DocumentStoreAdapter(StorageAdapter):
    """
    StorageAdapter backed by MongoDB through Motor.

    Args:
        database: Motor database holding the collections
        logger: Optional logger for adapter operations
        client: Client owning the database, closed by close() when given
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        logger: Optional[Logger] = None,
        client: Optional[AsyncIOMotorClient] = None,
    ) -> None:
        self.database = database
        self.client = client
        self.logger = ensure_logger(logger, __name__)

        self.permissions = database["permissions"]
        self.features = database["features"]
        self.roles = database["roles"]
        self.users = database["users"]

    @contextmanager
    def errors(self) -> Iterator[None]:
        """Translate driver failures into ConflictError or DBError."""
        try:
            yield
        except AppError:
            raise
        except DuplicateKeyError as e:
            self.logger.error(f"Duplicate key: {e}")
            raise ConflictError(
                message="Unique constraint violated", details={"error": str(e)}
            ) from e
        except PyMongoError as e:
            self.logger.error(f"MongoDB error: {e}")
            raise DBError(message=str(e), details={"error": str(e)}) from e

    # Lifecycle

    async def init(self) -> None:
        with self.errors():
            for collection in (self.permissions, self.features, self.roles):
                await collection.create_index([("name", ASCENDING)], unique=True)
            await self.users.create_index([("user_id", ASCENDING)], unique=True)
            # Users without an email leave the field out entirely
            await self.users.create_index([("email", ASCENDING)], unique=True, sparse=True)
            await self.users.create_index([("role_id", ASCENDING)])
            await self.roles.create_index([("grants.feature_id", ASCENDING)])
        self.logger.debug("MongoDB indexes ready")
        await self.bootstrap_standard_permissions()

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.logger.debug("MongoDB client closed")

    async def bootstrap_standard_permissions(self) -> None:
        for name, description in STANDARD_PERMISSIONS:
            with self.errors():
                if await self.permissions.find_one({"name": name}) is not None:
                    continue
                now = _now()
                try:
                    await self.permissions.insert_one(
                        {
                            "name": name,
                            "description": description,
                            "created_at": now,
                            "updated_at": now,
                        }
                    )
                except DuplicateKeyError:
                    # Created concurrently by another process
                    self.logger.debug(f"Standard permission already present: {name}")
                    continue
                self.logger.info(f"Created standard permission: {name}")

    # Shared helpers

    async def _find_by_id(self, collection, entity_id: Id) -> Optional[Document]:
        oid = to_object_id(entity_id)
        if oid is None:
            return None
        return await collection.find_one({"_id": oid})

    async def _require(self, collection, entity_id: Id, label: str) -> Document:
        doc = await self._find_by_id(collection, entity_id)
        if doc is None:
            raise NotFoundError(resource_type=label, resource_id=entity_id)
        return doc

    async def _ensure_unique_name(
        self, collection, name: str, label: str, exclude: Optional[ObjectId] = None
    ) -> None:
        query: Dict[str, Any] = {"name": name}
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        if await collection.find_one(query, {"_id": 1}) is not None:
            raise ConflictError(
                message=f"{label} '{name}' already exists",
                details={"resource_type": label, "name": name},
            )

    async def _page(self, collection, query: Dict[str, Any], limit: int, offset: int):
        check_window(limit, offset)
        total = await collection.count_documents(query)
        if limit == 0:
            # limit(0) means "no limit" to MongoDB
            return [], total
        cursor = collection.find(query).sort(NEWEST_FIRST).skip(offset).limit(limit)
        return await cursor.to_list(length=limit), total

    async def _grant_documents(self, grants: List[FeatureGrant]) -> List[Dict[str, Any]]:
        """Check every referenced id exists and build the embedded grant list."""
        documents = []
        for grant in grants:
            feature_oid = to_object_id(grant.feature_id)
            if feature_oid is None or await self.features.count_documents({"_id": feature_oid}) == 0:
                raise NotFoundError(resource_type="Feature", resource_id=grant.feature_id)
            permission_oids = []
            for permission_id in sorted(grant.permission_ids):
                permission_oid = to_object_id(permission_id)
                if (
                    permission_oid is None
                    or await self.permissions.count_documents({"_id": permission_oid}) == 0
                ):
                    raise NotFoundError(resource_type="Permission", resource_id=permission_id)
                permission_oids.append(permission_oid)
            documents.append({"feature_id": feature_oid, "permission_ids": permission_oids})
        return documents

    async def _resolve_role(self, doc: Document) -> RoleWithGrants:
        grants = doc.get("grants", [])
        feature_oids = [grant["feature_id"] for grant in grants]
        permission_oids = list(
            {pid for grant in grants for pid in grant.get("permission_ids", [])}
        )
        features = {
            f["_id"]: _to_feature(f)
            for f in await self.features.find(
                {"_id": {"$in": feature_oids}}
            ).to_list(length=None)
        }
        permissions = {
            p["_id"]: _to_permission(p)
            for p in await self.permissions.find(
                {"_id": {"$in": permission_oids}}
            ).to_list(length=None)
        }

        resolved = []
        for grant in grants:
            feature = features.get(grant["feature_id"])
            if feature is None:
                raise DBError(
                    message=f"Role '{doc['name']}' references missing feature {grant['feature_id']}",
                    details={"role_id": str(doc["_id"]), "feature_id": str(grant["feature_id"])},
                )
            held = []
            for pid in grant.get("permission_ids", []):
                if pid not in permissions:
                    raise DBError(
                        message=f"Role '{doc['name']}' references missing permission {pid}",
                        details={"role_id": str(doc["_id"]), "permission_id": str(pid)},
                    )
                held.append(permissions[pid])
            resolved.append(
                ResolvedGrant(feature=feature, permissions=sorted(held, key=lambda p: p.name))
            )
        resolved.sort(key=lambda grant: grant.feature.name)

        return RoleWithGrants(
            id=str(doc["_id"]),
            name=doc["name"],
            description=doc.get("description", ""),
            grants=resolved,
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )

    async def _set_fields(self, collection, oid: ObjectId, changes: Dict[str, Any]) -> Document:
        changes = {key: value for key, value in changes.items() if value is not None}
        changes["updated_at"] = _now()
        await collection.update_one({"_id": oid}, {"$set": changes})
        return await collection.find_one({"_id": oid})

    # Users

    async def create_user(self, data: UserCreate) -> User:
        with self.errors():
            if await self.users.find_one({"user_id": data.user_id}, {"_id": 1}):
                raise ConflictError(
                    message=f"User '{data.user_id}' already exists",
                    details={"resource_type": "User", "user_id": data.user_id},
                )
            if data.email is not None and await self.users.find_one(
                {"email": data.email}, {"_id": 1}
            ):
                raise ConflictError(
                    message=f"Email '{data.email}' is already in use",
                    details={"resource_type": "User", "email": data.email},
                )
            role_oid = None
            if data.role_id is not None:
                role_oid = (await self._require(self.roles, data.role_id, "Role"))["_id"]

            now = _now()
            doc: Dict[str, Any] = {
                "user_id": data.user_id,
                "name": data.name,
                "role_id": role_oid,
                "created_at": now,
                "updated_at": now,
            }
            if data.email is not None:
                doc["email"] = data.email
            result = await self.users.insert_one(doc)
            doc["_id"] = result.inserted_id
            self.logger.debug(f"Created user user_id={data.user_id}")
            return _to_user(doc)

    async def find_user_by_user_id(self, user_id: str) -> Optional[User]:
        with self.errors():
            doc = await self.users.find_one({"user_id": user_id})
            return _to_user(doc) if doc else None

    async def find_user_by_user_id_with_role(
        self, user_id: str
    ) -> Optional[UserWithRole]:
        with self.errors():
            doc = await self.users.find_one({"user_id": user_id})
            if doc is None:
                return None
            role = None
            if doc.get("role_id") is not None:
                role_doc = await self.roles.find_one({"_id": doc["role_id"]})
                if role_doc is not None:
                    role = await self._resolve_role(role_doc)
            return UserWithRole(**_to_user(doc).model_dump(), role=role)

    async def update_user(self, user_id: str, data: UserUpdate) -> User:
        changes = data.changes()
        with self.errors():
            doc = await self.users.find_one({"user_id": user_id})
            if doc is None:
                raise NotFoundError(resource_type="User", resource_id=user_id)

            to_set: Dict[str, Any] = {"updated_at": _now()}
            to_unset: Dict[str, Any] = {}
            if changes.get("name") is not None:
                to_set["name"] = changes["name"]
            if "email" in changes:
                email = changes["email"]
                if email is None:
                    to_unset["email"] = ""
                elif email != doc.get("email"):
                    clash = await self.users.find_one(
                        {"email": email, "_id": {"$ne": doc["_id"]}}, {"_id": 1}
                    )
                    if clash is not None:
                        raise ConflictError(
                            message=f"Email '{email}' is already in use",
                            details={"resource_type": "User", "email": email},
                        )
                    to_set["email"] = email
            if "role_id" in changes:
                role_id = changes["role_id"]
                to_set["role_id"] = (
                    None
                    if role_id is None
                    else (await self._require(self.roles, role_id, "Role"))["_id"]
                )

            update: Dict[str, Any] = {"$set": to_set}
            if to_unset:
                update["$unset"] = to_unset
            await self.users.update_one({"_id": doc["_id"]}, update)
            self.logger.debug(f"Updated user user_id={user_id}")
            return _to_user(await self.users.find_one({"_id": doc["_id"]}))

    async def delete_user(self, user_id: str) -> None:
        with self.errors():
            result = await self.users.delete_one({"user_id": user_id})
            if result.deleted_count == 0:
                raise NotFoundError(resource_type="User", resource_id=user_id)
            self.logger.debug(f"Deleted user user_id={user_id}")

    async def list_users(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0, search: Optional[str] = None
    ) -> Page[User]:
        query: Dict[str, Any] = {}
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query = {"$or": [{"user_id": pattern}, {"name": pattern}, {"email": pattern}]}
        with self.errors():
            docs, total = await self._page(self.users, query, limit, offset)
            return Page[User](items=[_to_user(d) for d in docs], total=total)

    # Roles

    async def create_role(self, data: RoleCreate) -> Role:
        grants = normalize_grants(data.grants)
        with self.errors():
            await self._ensure_unique_name(self.roles, data.name, "Role")
            now = _now()
            doc = {
                "name": data.name,
                "description": data.description,
                "grants": await self._grant_documents(grants),
                "created_at": now,
                "updated_at": now,
            }
            result = await self.roles.insert_one(doc)
            doc["_id"] = result.inserted_id
            self.logger.debug(f"Created role name={data.name} id={result.inserted_id}")
            return _to_role(doc)

    async def find_role_by_name(self, name: str) -> Optional[Role]:
        with self.errors():
            doc = await self.roles.find_one({"name": name})
            return _to_role(doc) if doc else None

    async def find_role_by_id(self, role_id: Id) -> Optional[Role]:
        with self.errors():
            doc = await self._find_by_id(self.roles, role_id)
            return _to_role(doc) if doc else None

    async def find_role_by_id_with_grants(
        self, role_id: Id
    ) -> Optional[RoleWithGrants]:
        with self.errors():
            doc = await self._find_by_id(self.roles, role_id)
            return await self._resolve_role(doc) if doc else None

    async def update_role(self, role_id: Id, data: RoleUpdate) -> Role:
        changes = data.changes()
        with self.errors():
            doc = await self._require(self.roles, role_id, "Role")
            if changes.get("name") is not None:
                await self._ensure_unique_name(
                    self.roles, changes["name"], "Role", exclude=doc["_id"]
                )
            updated = await self._set_fields(self.roles, doc["_id"], changes)
            self.logger.debug(f"Updated role id={role_id}")
            return _to_role(updated)

    async def delete_role(self, role_id: Id) -> None:
        with self.errors():
            doc = await self._require(self.roles, role_id, "Role")
            assigned = await self.users.count_documents({"role_id": doc["_id"]})
            if assigned:
                raise ConflictError(
                    message=f"Role '{doc['name']}' is assigned to {assigned} user(s)",
                    details={"resource_type": "Role", "resource_id": role_id, "users": assigned},
                )
            await self.roles.delete_one({"_id": doc["_id"]})
            self.logger.debug(f"Deleted role id={role_id}")

    async def list_roles(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[RoleSummary]:
        with self.errors():
            docs, total = await self._page(self.roles, {}, limit, offset)
            items = []
            for doc in docs:
                role = _to_role(doc)
                items.append(
                    RoleSummary(
                        **role.model_dump(),
                        user_count=await self.users.count_documents({"role_id": doc["_id"]}),
                        feature_count=len(role.grants),
                    )
                )
            return Page[RoleSummary](items=items, total=total)

    async def replace_role_grants(
        self, role_id: Id, grants: Iterable[FeatureGrant]
    ) -> None:
        grants = normalize_grants(grants)
        with self.errors():
            doc = await self._require(self.roles, role_id, "Role")
            documents = await self._grant_documents(grants)
            await self.roles.update_one(
                {"_id": doc["_id"]}, {"$set": {"grants": documents, "updated_at": _now()}}
            )
            self.logger.debug(
                f"Replaced grants of role id={role_id} with {len(documents)} feature grant(s)"
            )

    # Features

    async def create_feature(self, data: FeatureCreate) -> Feature:
        with self.errors():
            await self._ensure_unique_name(self.features, data.name, "Feature")
            now = _now()
            doc = {**data.model_dump(), "created_at": now, "updated_at": now}
            result = await self.features.insert_one(doc)
            doc["_id"] = result.inserted_id
            self.logger.debug(f"Created feature name={data.name} id={result.inserted_id}")
            return _to_feature(doc)

    async def find_feature_by_name(self, name: str) -> Optional[Feature]:
        with self.errors():
            doc = await self.features.find_one({"name": name})
            return _to_feature(doc) if doc else None

    async def find_feature_by_id(self, feature_id: Id) -> Optional[Feature]:
        with self.errors():
            doc = await self._find_by_id(self.features, feature_id)
            return _to_feature(doc) if doc else None

    async def update_feature(self, feature_id: Id, data: FeatureUpdate) -> Feature:
        changes = data.changes()
        with self.errors():
            doc = await self._require(self.features, feature_id, "Feature")
            if changes.get("name") is not None:
                await self._ensure_unique_name(
                    self.features, changes["name"], "Feature", exclude=doc["_id"]
                )
            updated = await self._set_fields(self.features, doc["_id"], changes)
            self.logger.debug(f"Updated feature id={feature_id}")
            return _to_feature(updated)

    async def delete_feature(self, feature_id: Id) -> bool:
        with self.errors():
            doc = await self._find_by_id(self.features, feature_id)
            if doc is None:
                self.logger.debug(f"Feature id={feature_id} already absent")
                return False
            oid = doc["_id"]
            referencing = await self.roles.find(
                {"grants": {"$elemMatch": {"feature_id": oid}}}
            ).to_list(length=None)
            for role in referencing:
                remaining = [g for g in role.get("grants", []) if g["feature_id"] != oid]
                await self.roles.update_one(
                    {"_id": role["_id"]},
                    {"$set": {"grants": remaining, "updated_at": _now()}},
                )
            await self.features.delete_one({"_id": oid})
            self.logger.debug(f"Deleted feature id={feature_id} from every role")
            return True

    async def list_features(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[FeatureSummary]:
        with self.errors():
            docs, total = await self._page(self.features, {}, limit, offset)
            items = [
                FeatureSummary(
                    **_to_feature(doc).model_dump(),
                    role_count=await self.roles.count_documents(
                        {"grants": {"$elemMatch": {"feature_id": doc["_id"]}}}
                    ),
                )
                for doc in docs
            ]
            return Page[FeatureSummary](items=items, total=total)

    # Permissions

    async def create_permission(self, data: PermissionCreate) -> Permission:
        with self.errors():
            await self._ensure_unique_name(self.permissions, data.name, "Permission")
            now = _now()
            doc = {**data.model_dump(), "created_at": now, "updated_at": now}
            result = await self.permissions.insert_one(doc)
            doc["_id"] = result.inserted_id
            self.logger.debug(f"Created permission name={data.name} id={result.inserted_id}")
            return _to_permission(doc)

    async def find_permission_by_name(self, name: str) -> Optional[Permission]:
        with self.errors():
            doc = await self.permissions.find_one({"name": name})
            return _to_permission(doc) if doc else None

    async def find_permission_by_id(self, permission_id: Id) -> Optional[Permission]:
        with self.errors():
            doc = await self._find_by_id(self.permissions, permission_id)
            return _to_permission(doc) if doc else None

    async def update_permission(
        self, permission_id: Id, data: PermissionUpdate
    ) -> Permission:
        changes = data.changes()
        with self.errors():
            doc = await self._require(self.permissions, permission_id, "Permission")
            if changes.get("name") is not None:
                await self._ensure_unique_name(
                    self.permissions, changes["name"], "Permission", exclude=doc["_id"]
                )
            updated = await self._set_fields(self.permissions, doc["_id"], changes)
            self.logger.debug(f"Updated permission id={permission_id}")
            return _to_permission(updated)

    async def delete_permission(self, permission_id: Id) -> bool:
        with self.errors():
            doc = await self._find_by_id(self.permissions, permission_id)
            if doc is None:
                self.logger.debug(f"Permission id={permission_id} already absent")
                return False
            oid = doc["_id"]
            referencing = await self.roles.find(
                {"grants": {"$elemMatch": {"permission_ids": oid}}}
            ).to_list(length=None)
            for role in referencing:
                remaining = []
                for grant in role.get("grants", []):
                    kept = [pid for pid in grant.get("permission_ids", []) if pid != oid]
                    # A grant left with nothing in it is removed
                    if kept:
                        remaining.append({"feature_id": grant["feature_id"], "permission_ids": kept})
                await self.roles.update_one(
                    {"_id": role["_id"]},
                    {"$set": {"grants": remaining, "updated_at": _now()}},
                )
            await self.permissions.delete_one({"_id": oid})
            self.logger.debug(f"Deleted permission id={permission_id} from every grant")
            return True

    async def list_permissions(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[PermissionSummary]:
        with self.errors():
            docs, total = await self._page(self.permissions, {}, limit, offset)
            items = [
                PermissionSummary(
                    **_to_permission(doc).model_dump(),
                    role_count=await self.roles.count_documents(
                        {"grants": {"$elemMatch": {"permission_ids": doc["_id"]}}}
                    ),
                )
                for doc in docs
            ]
            return Page[PermissionSummary](items=items, total=total)

    # Aggregates

    async def get_feature_permissions(self, user_id: str, feature_name: str) -> Set[str]:
        with self.errors():
            return await super().get_feature_permissions(user_id, feature_name)

    async def get_counts(self) -> Counts:
        with self.errors():
            return Counts(
                users=await self.users.count_documents({}),
                roles=await self.roles.count_documents({}),
                features=await self.features.count_documents({}),
                permissions=await self.permissions.count_documents({}),
            )
