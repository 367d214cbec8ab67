"""
Relational storage adapter built on async SQLAlchemy.

Grants are stored as rows of the role_feature_permissions junction table.
Every public operation runs in its own transaction, so multi-statement
mutations (role creation with grants, grant replacement, role deletion and
the feature/permission cascades) either commit as a whole or leave the
previous state untouched.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import delete, distinct, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from featureguard.db.adapter import (
    DEFAULT_PAGE_SIZE,
    StorageAdapter,
    check_window,
    normalize_grants,
)
from featureguard.db.base import metadata, utcnow
from featureguard.db.tables import (
    FeatureRecord,
    PermissionRecord,
    RoleFeaturePermission,
    RoleRecord,
    UserRecord,
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


def _to_permission(record: PermissionRecord) -> Permission:
    return Permission(
        id=record.id,
        name=record.name,
        description=record.description or "",
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _to_feature(record: FeatureRecord) -> Feature:
    return Feature(
        id=record.id,
        name=record.name,
        description=record.description or "",
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _to_user(record: UserRecord) -> User:
    return User(
        id=record.id,
        user_id=record.user_id,
        name=record.name or "",
        email=record.email,
        role_id=record.role_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _to_role(record: RoleRecord, grants: Sequence[FeatureGrant]) -> Role:
    return Role(
        id=record.id,
        name=record.name,
        description=record.description or "",
        grants=list(grants),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class RelationalStoreAdapter(StorageAdapter):
    """
    StorageAdapter backed by PostgreSQL (asyncpg) or SQLite (aiosqlite).

    Args:
        engine: AsyncEngine bound to the target database
        logger: Optional logger for adapter operations
    """

    def __init__(self, engine: AsyncEngine, logger: Optional[Logger] = None) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
        self.logger = ensure_logger(logger, __name__)
        # A StaticPool hands every session the same connection, so two open
        # transactions would share one commit. Only one may run at a time.
        self._connection_lock: Optional[asyncio.Lock] = (
            asyncio.Lock() if isinstance(engine.sync_engine.pool, StaticPool) else None
        )

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._connection_lock is None:
            yield
            return
        async with self._connection_lock:
            yield

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session with a transaction that commits on success.

        Driver errors are rolled back and re-raised as ConflictError (for
        constraint violations) or DBError. On a single-connection engine
        (in-memory SQLite) transactions run one at a time.
        """
        async with self._exclusive(), self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except AppError:
                raise
            except IntegrityError as e:
                self.logger.error(f"Integrity error: {e.orig}")
                raise ConflictError(
                    message="Unique constraint violated", details={"error": str(e.orig)}
                ) from e
            except SQLAlchemyError as e:
                self.logger.error(f"Database error: {e}")
                raise DBError(message=str(e), details={"error": str(e)}) from e

    # Lifecycle

    async def init(self) -> None:
        try:
            async with self._exclusive(), self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as e:
            self.logger.error(f"Schema creation failed: {e}")
            raise DBError(message=str(e), details={"error": str(e)}) from e
        self.logger.debug("Relational schema ready")
        await self.bootstrap_standard_permissions()

    async def close(self) -> None:
        await self.engine.dispose()
        self.logger.debug("Database engine disposed")

    async def bootstrap_standard_permissions(self) -> None:
        for name, description in STANDARD_PERMISSIONS:
            try:
                async with self.transaction() as session:
                    existing = await self._scalar_by(session, PermissionRecord, name=name)
                    if existing is None:
                        session.add(PermissionRecord(name=name, description=description))
                        self.logger.info(f"Created standard permission: {name}")
            except ConflictError:
                # Created concurrently by another process
                self.logger.debug(f"Standard permission already present: {name}")

    # Shared helpers

    async def _scalar_by(self, session: AsyncSession, model, **filters):
        result = await session.execute(select(model).filter_by(**filters))
        return result.scalar_one_or_none()

    async def _require(self, session: AsyncSession, model, record_id: Id, label: str):
        record = await session.get(model, record_id)
        if record is None:
            raise NotFoundError(resource_type=label, resource_id=record_id)
        return record

    async def _ensure_unique_name(
        self, session: AsyncSession, model, name: str, label: str, exclude_id: Optional[Id] = None
    ) -> None:
        stmt = select(model.id).where(model.name == name)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        if (await session.execute(stmt)).first() is not None:
            raise ConflictError(
                message=f"{label} '{name}' already exists",
                details={"resource_type": label, "name": name},
            )

    async def _count(self, session: AsyncSession, model, *conditions) -> int:
        stmt = select(func.count()).select_from(model)
        if conditions:
            stmt = stmt.where(*conditions)
        return int((await session.execute(stmt)).scalar_one())

    async def _load_grants(
        self, session: AsyncSession, role_ids: Sequence[Id]
    ) -> Dict[Id, List[FeatureGrant]]:
        grants: Dict[Id, List[FeatureGrant]] = {role_id: [] for role_id in role_ids}
        if not role_ids:
            return grants
        stmt = (
            select(
                RoleFeaturePermission.role_id,
                RoleFeaturePermission.feature_id,
                RoleFeaturePermission.permission_id,
            )
            .where(RoleFeaturePermission.role_id.in_(role_ids))
            .order_by(RoleFeaturePermission.created_at, RoleFeaturePermission.id)
        )
        collected: Dict[Id, Dict[Id, Set[Id]]] = defaultdict(dict)
        for role_id, feature_id, permission_id in (await session.execute(stmt)).all():
            collected[role_id].setdefault(feature_id, set()).add(permission_id)
        for role_id, by_feature in collected.items():
            grants[role_id] = [
                FeatureGrant(feature_id=feature_id, permission_ids=permission_ids)
                for feature_id, permission_ids in by_feature.items()
            ]
        return grants

    async def _resolve_role(
        self, session: AsyncSession, record: RoleRecord
    ) -> RoleWithGrants:
        stmt = (
            select(FeatureRecord, PermissionRecord)
            .select_from(RoleFeaturePermission)
            .join(FeatureRecord, FeatureRecord.id == RoleFeaturePermission.feature_id)
            .join(
                PermissionRecord,
                PermissionRecord.id == RoleFeaturePermission.permission_id,
            )
            .where(RoleFeaturePermission.role_id == record.id)
        )
        features: Dict[Id, Feature] = {}
        permissions: Dict[Id, List[Permission]] = defaultdict(list)
        for feature, permission in (await session.execute(stmt)).all():
            features.setdefault(feature.id, _to_feature(feature))
            permissions[feature.id].append(_to_permission(permission))

        grants = [
            ResolvedGrant(
                feature=feature,
                permissions=sorted(permissions[feature_id], key=lambda p: p.name),
            )
            for feature_id, feature in features.items()
        ]
        grants.sort(key=lambda grant: grant.feature.name)
        return RoleWithGrants(
            id=record.id,
            name=record.name,
            description=record.description or "",
            grants=grants,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    async def _validate_grants(
        self, session: AsyncSession, grants: List[FeatureGrant]
    ) -> None:
        feature_ids = {grant.feature_id for grant in grants}
        permission_ids = set().union(*(grant.permission_ids for grant in grants))
        if feature_ids:
            found = set(
                (
                    await session.execute(
                        select(FeatureRecord.id).where(FeatureRecord.id.in_(feature_ids))
                    )
                ).scalars()
            )
            missing = sorted(feature_ids - found)
            if missing:
                raise NotFoundError(resource_type="Feature", resource_id=missing[0])
        if permission_ids:
            found = set(
                (
                    await session.execute(
                        select(PermissionRecord.id).where(
                            PermissionRecord.id.in_(permission_ids)
                        )
                    )
                ).scalars()
            )
            missing = sorted(permission_ids - found)
            if missing:
                raise NotFoundError(resource_type="Permission", resource_id=missing[0])

    def _write_grants(
        self, session: AsyncSession, role_id: Id, grants: List[FeatureGrant]
    ) -> None:
        for grant in grants:
            for permission_id in sorted(grant.permission_ids):
                session.add(
                    RoleFeaturePermission(
                        role_id=role_id,
                        feature_id=grant.feature_id,
                        permission_id=permission_id,
                    )
                )

    # Users

    async def create_user(self, data: UserCreate) -> User:
        async with self.transaction() as session:
            if await self._scalar_by(session, UserRecord, user_id=data.user_id):
                raise ConflictError(
                    message=f"User '{data.user_id}' already exists",
                    details={"resource_type": "User", "user_id": data.user_id},
                )
            if data.email is not None and await self._scalar_by(
                session, UserRecord, email=data.email
            ):
                raise ConflictError(
                    message=f"Email '{data.email}' is already in use",
                    details={"resource_type": "User", "email": data.email},
                )
            if data.role_id is not None:
                await self._require(session, RoleRecord, data.role_id, "Role")
            record = UserRecord(**data.model_dump())
            session.add(record)
            await session.flush()
            self.logger.debug(f"Created user user_id={record.user_id}")
            return _to_user(record)

    async def find_user_by_user_id(self, user_id: str) -> Optional[User]:
        async with self.transaction() as session:
            record = await self._scalar_by(session, UserRecord, user_id=user_id)
            return _to_user(record) if record else None

    async def find_user_by_user_id_with_role(
        self, user_id: str
    ) -> Optional[UserWithRole]:
        async with self.transaction() as session:
            record = await self._scalar_by(session, UserRecord, user_id=user_id)
            if record is None:
                return None
            role = None
            if record.role_id is not None:
                role_record = await session.get(RoleRecord, record.role_id)
                if role_record is not None:
                    role = await self._resolve_role(session, role_record)
            return UserWithRole(**_to_user(record).model_dump(), role=role)

    async def update_user(self, user_id: str, data: UserUpdate) -> User:
        changes = data.changes()
        async with self.transaction() as session:
            record = await self._scalar_by(session, UserRecord, user_id=user_id)
            if record is None:
                raise NotFoundError(resource_type="User", resource_id=user_id)
            email = changes.get("email")
            if email is not None and email != record.email:
                clash = await session.execute(
                    select(UserRecord.id).where(
                        UserRecord.email == email, UserRecord.id != record.id
                    )
                )
                if clash.first() is not None:
                    raise ConflictError(
                        message=f"Email '{email}' is already in use",
                        details={"resource_type": "User", "email": email},
                    )
            if changes.get("role_id") is not None:
                await self._require(session, RoleRecord, changes["role_id"], "Role")
            for key, value in changes.items():
                if key == "name" and value is None:
                    continue
                setattr(record, key, value)
            await session.flush()
            self.logger.debug(f"Updated user user_id={user_id}")
            return _to_user(record)

    async def delete_user(self, user_id: str) -> None:
        async with self.transaction() as session:
            record = await self._scalar_by(session, UserRecord, user_id=user_id)
            if record is None:
                raise NotFoundError(resource_type="User", resource_id=user_id)
            await session.delete(record)
            self.logger.debug(f"Deleted user user_id={user_id}")

    async def list_users(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0, search: Optional[str] = None
    ) -> Page[User]:
        check_window(limit, offset)
        conditions = []
        if search:
            conditions.append(
                or_(
                    UserRecord.user_id.icontains(search, autoescape=True),
                    UserRecord.name.icontains(search, autoescape=True),
                    UserRecord.email.icontains(search, autoescape=True),
                )
            )
        async with self.transaction() as session:
            total = await self._count(session, UserRecord, *conditions)
            stmt = (
                select(UserRecord)
                .where(*conditions)
                .order_by(UserRecord.created_at.desc(), UserRecord.id.desc())
                .offset(offset)
                .limit(limit)
            )
            records = (await session.execute(stmt)).scalars().all()
            return Page[User](items=[_to_user(r) for r in records], total=total)

    # Roles

    async def create_role(self, data: RoleCreate) -> Role:
        grants = normalize_grants(data.grants)
        async with self.transaction() as session:
            await self._ensure_unique_name(session, RoleRecord, data.name, "Role")
            await self._validate_grants(session, grants)
            record = RoleRecord(name=data.name, description=data.description)
            session.add(record)
            await session.flush()
            self._write_grants(session, record.id, grants)
            await session.flush()
            self.logger.debug(f"Created role name={record.name} id={record.id}")
            return _to_role(record, grants)

    async def find_role_by_name(self, name: str) -> Optional[Role]:
        async with self.transaction() as session:
            record = await self._scalar_by(session, RoleRecord, name=name)
            if record is None:
                return None
            grants = await self._load_grants(session, [record.id])
            return _to_role(record, grants[record.id])

    async def find_role_by_id(self, role_id: Id) -> Optional[Role]:
        async with self.transaction() as session:
            record = await session.get(RoleRecord, role_id)
            if record is None:
                return None
            grants = await self._load_grants(session, [record.id])
            return _to_role(record, grants[record.id])

    async def find_role_by_id_with_grants(
        self, role_id: Id
    ) -> Optional[RoleWithGrants]:
        async with self.transaction() as session:
            record = await session.get(RoleRecord, role_id)
            if record is None:
                return None
            return await self._resolve_role(session, record)

    async def update_role(self, role_id: Id, data: RoleUpdate) -> Role:
        changes = data.changes()
        async with self.transaction() as session:
            record = await self._require(session, RoleRecord, role_id, "Role")
            if changes.get("name") is not None:
                await self._ensure_unique_name(
                    session, RoleRecord, changes["name"], "Role", exclude_id=role_id
                )
            for key, value in changes.items():
                if value is not None:
                    setattr(record, key, value)
            await session.flush()
            grants = await self._load_grants(session, [record.id])
            self.logger.debug(f"Updated role id={role_id}")
            return _to_role(record, grants[record.id])

    async def delete_role(self, role_id: Id) -> None:
        async with self.transaction() as session:
            record = await self._require(session, RoleRecord, role_id, "Role")
            assigned = await self._count(session, UserRecord, UserRecord.role_id == role_id)
            if assigned:
                raise ConflictError(
                    message=f"Role '{record.name}' is assigned to {assigned} user(s)",
                    details={"resource_type": "Role", "resource_id": role_id, "users": assigned},
                )
            await session.execute(
                delete(RoleFeaturePermission).where(RoleFeaturePermission.role_id == role_id)
            )
            await session.delete(record)
            self.logger.debug(f"Deleted role id={role_id}")

    async def list_roles(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[RoleSummary]:
        check_window(limit, offset)
        async with self.transaction() as session:
            total = await self._count(session, RoleRecord)
            stmt = (
                select(RoleRecord)
                .order_by(RoleRecord.created_at.desc(), RoleRecord.id.desc())
                .offset(offset)
                .limit(limit)
            )
            records = (await session.execute(stmt)).scalars().all()
            role_ids = [r.id for r in records]
            grants = await self._load_grants(session, role_ids)
            user_counts = dict(
                (
                    await session.execute(
                        select(UserRecord.role_id, func.count())
                        .where(UserRecord.role_id.in_(role_ids))
                        .group_by(UserRecord.role_id)
                    )
                ).all()
            )
            items = [
                RoleSummary(
                    **_to_role(r, grants[r.id]).model_dump(),
                    user_count=user_counts.get(r.id, 0),
                    feature_count=len(grants[r.id]),
                )
                for r in records
            ]
            return Page[RoleSummary](items=items, total=total)

    async def replace_role_grants(
        self, role_id: Id, grants: Iterable[FeatureGrant]
    ) -> None:
        grants = normalize_grants(grants)
        async with self.transaction() as session:
            record = await self._require(session, RoleRecord, role_id, "Role")
            await self._validate_grants(session, grants)
            await session.execute(
                delete(RoleFeaturePermission).where(RoleFeaturePermission.role_id == role_id)
            )
            self._write_grants(session, role_id, grants)
            record.updated_at = utcnow()
            await session.flush()
            self.logger.debug(
                f"Replaced grants of role id={role_id} with {len(grants)} feature grant(s)"
            )

    # Features

    async def create_feature(self, data: FeatureCreate) -> Feature:
        async with self.transaction() as session:
            await self._ensure_unique_name(session, FeatureRecord, data.name, "Feature")
            record = FeatureRecord(**data.model_dump())
            session.add(record)
            await session.flush()
            self.logger.debug(f"Created feature name={record.name} id={record.id}")
            return _to_feature(record)

    async def find_feature_by_name(self, name: str) -> Optional[Feature]:
        async with self.transaction() as session:
            record = await self._scalar_by(session, FeatureRecord, name=name)
            return _to_feature(record) if record else None

    async def find_feature_by_id(self, feature_id: Id) -> Optional[Feature]:
        async with self.transaction() as session:
            record = await session.get(FeatureRecord, feature_id)
            return _to_feature(record) if record else None

    async def update_feature(self, feature_id: Id, data: FeatureUpdate) -> Feature:
        changes = data.changes()
        async with self.transaction() as session:
            record = await self._require(session, FeatureRecord, feature_id, "Feature")
            if changes.get("name") is not None:
                await self._ensure_unique_name(
                    session, FeatureRecord, changes["name"], "Feature", exclude_id=feature_id
                )
            for key, value in changes.items():
                if value is not None:
                    setattr(record, key, value)
            await session.flush()
            self.logger.debug(f"Updated feature id={feature_id}")
            return _to_feature(record)

    async def delete_feature(self, feature_id: Id) -> bool:
        async with self.transaction() as session:
            record = await session.get(FeatureRecord, feature_id)
            if record is None:
                self.logger.debug(f"Feature id={feature_id} already absent")
                return False
            await session.execute(
                delete(RoleFeaturePermission).where(
                    RoleFeaturePermission.feature_id == feature_id
                )
            )
            await session.delete(record)
            self.logger.debug(f"Deleted feature id={feature_id} from every role")
            return True

    async def list_features(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[FeatureSummary]:
        check_window(limit, offset)
        async with self.transaction() as session:
            total = await self._count(session, FeatureRecord)
            stmt = (
                select(FeatureRecord)
                .order_by(FeatureRecord.created_at.desc(), FeatureRecord.id.desc())
                .offset(offset)
                .limit(limit)
            )
            records = (await session.execute(stmt)).scalars().all()
            role_counts = dict(
                (
                    await session.execute(
                        select(
                            RoleFeaturePermission.feature_id,
                            func.count(distinct(RoleFeaturePermission.role_id)),
                        )
                        .where(RoleFeaturePermission.feature_id.in_([r.id for r in records]))
                        .group_by(RoleFeaturePermission.feature_id)
                    )
                ).all()
            )
            items = [
                FeatureSummary(**_to_feature(r).model_dump(), role_count=role_counts.get(r.id, 0))
                for r in records
            ]
            return Page[FeatureSummary](items=items, total=total)

    # Permissions

    async def create_permission(self, data: PermissionCreate) -> Permission:
        async with self.transaction() as session:
            await self._ensure_unique_name(session, PermissionRecord, data.name, "Permission")
            record = PermissionRecord(**data.model_dump())
            session.add(record)
            await session.flush()
            self.logger.debug(f"Created permission name={record.name} id={record.id}")
            return _to_permission(record)

    async def find_permission_by_name(self, name: str) -> Optional[Permission]:
        async with self.transaction() as session:
            record = await self._scalar_by(session, PermissionRecord, name=name)
            return _to_permission(record) if record else None

    async def find_permission_by_id(self, permission_id: Id) -> Optional[Permission]:
        async with self.transaction() as session:
            record = await session.get(PermissionRecord, permission_id)
            return _to_permission(record) if record else None

    async def update_permission(
        self, permission_id: Id, data: PermissionUpdate
    ) -> Permission:
        changes = data.changes()
        async with self.transaction() as session:
            record = await self._require(session, PermissionRecord, permission_id, "Permission")
            if changes.get("name") is not None:
                await self._ensure_unique_name(
                    session,
                    PermissionRecord,
                    changes["name"],
                    "Permission",
                    exclude_id=permission_id,
                )
            for key, value in changes.items():
                if value is not None:
                    setattr(record, key, value)
            await session.flush()
            self.logger.debug(f"Updated permission id={permission_id}")
            return _to_permission(record)

    async def delete_permission(self, permission_id: Id) -> bool:
        async with self.transaction() as session:
            record = await session.get(PermissionRecord, permission_id)
            if record is None:
                self.logger.debug(f"Permission id={permission_id} already absent")
                return False
            await session.execute(
                delete(RoleFeaturePermission).where(
                    RoleFeaturePermission.permission_id == permission_id
                )
            )
            await session.delete(record)
            self.logger.debug(f"Deleted permission id={permission_id} from every grant")
            return True

    async def list_permissions(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[PermissionSummary]:
        check_window(limit, offset)
        async with self.transaction() as session:
            total = await self._count(session, PermissionRecord)
            stmt = (
                select(PermissionRecord)
                .order_by(PermissionRecord.created_at.desc(), PermissionRecord.id.desc())
                .offset(offset)
                .limit(limit)
            )
            records = (await session.execute(stmt)).scalars().all()
            role_counts = dict(
                (
                    await session.execute(
                        select(
                            RoleFeaturePermission.permission_id,
                            func.count(distinct(RoleFeaturePermission.role_id)),
                        )
                        .where(
                            RoleFeaturePermission.permission_id.in_([r.id for r in records])
                        )
                        .group_by(RoleFeaturePermission.permission_id)
                    )
                ).all()
            )
            items = [
                PermissionSummary(
                    **_to_permission(r).model_dump(), role_count=role_counts.get(r.id, 0)
                )
                for r in records
            ]
            return Page[PermissionSummary](items=items, total=total)

    # Aggregates

    async def get_feature_permissions(self, user_id: str, feature_name: str) -> Set[str]:
        stmt = (
            select(PermissionRecord.name)
            .select_from(UserRecord)
            .join(RoleFeaturePermission, RoleFeaturePermission.role_id == UserRecord.role_id)
            .join(FeatureRecord, FeatureRecord.id == RoleFeaturePermission.feature_id)
            .join(PermissionRecord, PermissionRecord.id == RoleFeaturePermission.permission_id)
            .where(UserRecord.user_id == user_id, FeatureRecord.name == feature_name)
        )
        async with self.transaction() as session:
            return set((await session.execute(stmt)).scalars().all())

    async def get_counts(self) -> Counts:
        async with self.transaction() as session:
            return Counts(
                users=await self._count(session, UserRecord),
                roles=await self._count(session, RoleRecord),
                features=await self._count(session, FeatureRecord),
                permissions=await self._count(session, PermissionRecord),
            )
