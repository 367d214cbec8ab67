"""
Role-graph mutation service.

Every change to roles, grants and user assignments goes through
RoleGraphService. It talks to storage only through StorageAdapter, so it
behaves the same on every backend.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from featureguard.db.adapter import StorageAdapter
from featureguard.errors.exceptions import ConflictError, NotFoundError
from featureguard.logging import Logger, ensure_logger
from featureguard.models.entities import (
    Feature,
    FeatureGrant,
    Id,
    Permission,
    Role,
    RoleWithGrants,
    User,
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
from featureguard.services.hooks import RBACObserver, RoleUpdateEvent, notify


class RoleGraphService:
    """
    Mutations of the role/feature/permission graph.

    Args:
        adapter: Storage adapter
        default_role_name: Role given to newly registered users when the
            caller names none
        observers: Observers notified after registration and role changes
        logger: Optional logger

    Example:
        ```python
        service = RoleGraphService(adapter, default_role_name="viewer")
        await service.bootstrap()
        user = await service.register_user("alice", email="alice@example.com")
        await service.assign_role("alice", "manager")
        ```
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        default_role_name: Optional[str] = None,
        observers: Sequence[RBACObserver] = (),
        logger: Optional[Logger] = None,
    ) -> None:
        self.adapter = adapter
        self.default_role_name = default_role_name
        self.observers: List[RBACObserver] = list(observers)
        self.logger = ensure_logger(logger, __name__)

    def add_observer(self, observer: RBACObserver) -> None:
        self.observers.append(observer)

    async def _require_role(self, role_id: Id) -> RoleWithGrants:
        role = await self.adapter.find_role_by_id_with_grants(role_id)
        if role is None:
            raise NotFoundError(resource_type="Role", resource_id=role_id)
        return role

    async def _replace(self, role_id: Id, grants: Dict[Id, set]) -> RoleWithGrants:
        await self.adapter.replace_role_grants(
            role_id,
            [
                FeatureGrant(feature_id=feature_id, permission_ids=permission_ids)
                for feature_id, permission_ids in grants.items()
            ],
        )
        return await self._require_role(role_id)

    # Grants

    async def grant_permissions(
        self, role_id: Id, feature_id: Id, permission_ids: Iterable[Id]
    ) -> RoleWithGrants:
        """
        Add permissions on a feature to a role, keeping everything it holds.

        The feature grant is created if the role does not hold it yet.

        Raises:
            NotFoundError: If the role, feature or a permission does not exist
        """
        role = await self._require_role(role_id)
        grants = {g.feature_id: set(g.permission_ids) for g in role.to_feature_grants()}
        grants[feature_id] = grants.get(feature_id, set()) | set(permission_ids)
        updated = await self._replace(role_id, grants)
        self.logger.info(f"Granted permissions on feature {feature_id} to role {role.name}")
        return updated

    async def revoke_permissions(
        self, role_id: Id, feature_id: Id, permission_ids: Iterable[Id]
    ) -> RoleWithGrants:
        """
        Remove permissions on a feature from a role.

        Revoking from a feature the role does not hold changes nothing. A
        feature left with no permissions is dropped from the role.
        """
        role = await self._require_role(role_id)
        grants = {g.feature_id: set(g.permission_ids) for g in role.to_feature_grants()}
        if feature_id not in grants:
            return role
        grants[feature_id] -= set(permission_ids)
        updated = await self._replace(role_id, grants)
        self.logger.info(f"Revoked permissions on feature {feature_id} from role {role.name}")
        return updated

    async def remove_features(self, role_id: Id, feature_ids: Iterable[Id]) -> RoleWithGrants:
        """Drop whole features from a role."""
        role = await self._require_role(role_id)
        removed = set(feature_ids)
        grants = {
            g.feature_id: set(g.permission_ids)
            for g in role.to_feature_grants()
            if g.feature_id not in removed
        }
        updated = await self._replace(role_id, grants)
        self.logger.info(f"Removed {len(removed)} feature(s) from role {role.name}")
        return updated

    # Roles

    async def create_role(
        self,
        name: str,
        description: str = "",
        grants: Optional[Iterable[FeatureGrant]] = None,
    ) -> Role:
        role = await self.adapter.create_role(
            RoleCreate(name=name, description=description, grants=list(grants or []))
        )
        self.logger.info(f"Created role {role.name}")
        return role

    async def update_role(
        self, role_id: Id, name: Optional[str] = None, description: Optional[str] = None
    ) -> Role:
        return await self.adapter.update_role(
            role_id, RoleUpdate(name=name, description=description)
        )

    async def delete_role(self, role_id: Id) -> None:
        """
        Delete a role that no user holds.

        Raises:
            NotFoundError: If the role does not exist
            ConflictError: If the role is still assigned
        """
        await self.adapter.delete_role(role_id)
        self.logger.info(f"Deleted role {role_id}")

    # Features and permissions

    async def create_feature(self, name: str, description: str = "") -> Feature:
        return await self.adapter.create_feature(
            FeatureCreate(name=name, description=description)
        )

    async def update_feature(
        self, feature_id: Id, name: Optional[str] = None, description: Optional[str] = None
    ) -> Feature:
        return await self.adapter.update_feature(
            feature_id, FeatureUpdate(name=name, description=description)
        )

    async def create_permission(self, name: str, description: str = "") -> Permission:
        return await self.adapter.create_permission(
            PermissionCreate(name=name, description=description)
        )

    async def update_permission(
        self,
        permission_id: Id,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Permission:
        return await self.adapter.update_permission(
            permission_id, PermissionUpdate(name=name, description=description)
        )

    async def delete_feature_everywhere(self, feature_id: Id) -> bool:
        """Delete a feature and strip it from every role. Idempotent."""
        deleted = await self.adapter.delete_feature(feature_id)
        if deleted:
            self.logger.info(f"Deleted feature {feature_id} everywhere")
        return deleted

    async def delete_permission_everywhere(self, permission_id: Id) -> bool:
        """Delete a permission and strip it from every grant. Idempotent."""
        deleted = await self.adapter.delete_permission(permission_id)
        if deleted:
            self.logger.info(f"Deleted permission {permission_id} everywhere")
        return deleted

    # Users

    async def register_user(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        default_role_name: Optional[str] = None,
    ) -> User:
        """
        Register a user, giving it the default role when one exists.

        Observers are notified with the stored user.

        Raises:
            ConflictError: If the user_id is already registered
        """
        if await self.adapter.find_user_by_user_id(user_id) is not None:
            raise ConflictError(
                message=f"User '{user_id}' already exists",
                details={"resource_type": "User", "user_id": user_id},
            )

        role_id = None
        role_name = default_role_name or self.default_role_name
        if role_name:
            role = await self.adapter.find_role_by_name(role_name)
            if role is not None:
                role_id = role.id
            else:
                self.logger.warning(
                    f"Default role '{role_name}' not found; user {user_id} has no role"
                )

        user = await self.adapter.create_user(
            UserCreate(user_id=user_id, name=name or "", email=email, role_id=role_id)
        )
        self.logger.info(f"Registered user {user_id}")
        await notify(self.observers, "on_user_register", user, self.logger)
        return user

    async def update_user(
        self, user_id: str, name: Optional[str] = None, email: Optional[str] = None
    ) -> User:
        """Change a user's display name or email. Omitted fields are kept."""
        changes = {}
        if name is not None:
            changes["name"] = name
        if email is not None:
            changes["email"] = email
        return await self.adapter.update_user(user_id, UserUpdate(**changes))

    async def assign_role(self, user_id: str, role_name: str) -> User:
        """
        Give a user the named role.

        Raises:
            NotFoundError: If the user or the role does not exist
        """
        if await self.adapter.find_user_by_user_id(user_id) is None:
            raise NotFoundError(resource_type="User", resource_id=user_id)
        role = await self.adapter.find_role_by_name(role_name)
        if role is None:
            raise NotFoundError(
                message=f"Role '{role_name}' not found",
                details={"resource_type": "Role", "name": role_name},
            )

        user = await self.adapter.update_user(user_id, UserUpdate(role_id=role.id))
        self.logger.info(f"Assigned role {role.name} to user {user_id}")
        await notify(
            self.observers,
            "on_role_update",
            RoleUpdateEvent(user_id=user_id, role=role),
            self.logger,
        )
        return user

    async def bootstrap(self) -> None:
        """Ensure the standard permissions exist."""
        await self.adapter.bootstrap_standard_permissions()
