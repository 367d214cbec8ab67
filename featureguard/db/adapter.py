"""
Storage adapter contract.

Every backend implements StorageAdapter with identical observable
semantics, so the authorization engine and the role-graph service never
branch on which backend is active.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Set

from featureguard.errors.exceptions import ValidationError
from featureguard.models.entities import (
    Counts,
    Feature,
    FeatureGrant,
    FeatureSummary,
    Id,
    Page,
    Permission,
    PermissionSummary,
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

DEFAULT_PAGE_SIZE = 50


def normalize_grants(grants: Iterable[FeatureGrant]) -> List[FeatureGrant]:
    """
    Validate a grant list before it is written.

    Grants with no permissions are dropped, since a role holding a feature
    with nothing in it is indistinguishable from not holding it.

    Raises:
        ValidationError: If a feature appears more than once
    """
    seen: Set[Id] = set()
    normalized: List[FeatureGrant] = []
    for grant in grants:
        if grant.feature_id in seen:
            raise ValidationError(
                message=f"Feature '{grant.feature_id}' appears in more than one grant",
                fields=[{"field": "grants", "message": "duplicate feature_id"}],
            )
        seen.add(grant.feature_id)
        if grant.permission_ids:
            normalized.append(grant)
    return normalized


def check_window(limit: int, offset: int) -> None:
    """Reject negative page windows."""
    if limit < 0 or offset < 0:
        raise ValidationError(message="limit and offset must not be negative")


class StorageAdapter(ABC):
    """
    Abstract storage contract for the role/feature/permission graph.

    All operations are asynchronous and none of them retries. Lookups return
    None on a miss; updates and deletes of a missing target raise
    NotFoundError, except feature and permission deletes, which are
    idempotent and report whether anything was removed.
    """

    # Lifecycle

    @abstractmethod
    async def init(self) -> None:
        """Prepare the backend and create the standard permissions."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying engine or client."""

    @abstractmethod
    async def bootstrap_standard_permissions(self) -> None:
        """Create any missing standard permission. Safe on every startup."""

    # Users

    @abstractmethod
    async def create_user(self, data: UserCreate) -> User: ...

    @abstractmethod
    async def find_user_by_user_id(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def find_user_by_user_id_with_role(
        self, user_id: str
    ) -> Optional[UserWithRole]: ...

    @abstractmethod
    async def update_user(self, user_id: str, data: UserUpdate) -> User: ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> None: ...

    @abstractmethod
    async def list_users(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0, search: Optional[str] = None
    ) -> Page[User]:
        """
        List users, newest first.

        When search is non-empty, only users whose user_id, name or email
        contains it (case-insensitive) are counted and returned.
        """

    # Roles

    @abstractmethod
    async def create_role(self, data: RoleCreate) -> Role: ...

    @abstractmethod
    async def find_role_by_name(self, name: str) -> Optional[Role]: ...

    @abstractmethod
    async def find_role_by_id(self, role_id: Id) -> Optional[Role]: ...

    @abstractmethod
    async def find_role_by_id_with_grants(
        self, role_id: Id
    ) -> Optional[RoleWithGrants]: ...

    @abstractmethod
    async def update_role(self, role_id: Id, data: RoleUpdate) -> Role: ...

    @abstractmethod
    async def delete_role(self, role_id: Id) -> None:
        """
        Delete a role and its grants.

        Raises:
            NotFoundError: If the role does not exist
            ConflictError: If any user is still assigned the role
        """

    @abstractmethod
    async def list_roles(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[RoleSummary]: ...

    @abstractmethod
    async def replace_role_grants(
        self, role_id: Id, grants: Iterable[FeatureGrant]
    ) -> None:
        """
        Atomically replace every grant of a role with exactly ``grants``.

        Features not listed lose all their permissions. Nothing is merged.
        """

    # Features

    @abstractmethod
    async def create_feature(self, data: FeatureCreate) -> Feature: ...

    @abstractmethod
    async def find_feature_by_name(self, name: str) -> Optional[Feature]: ...

    @abstractmethod
    async def find_feature_by_id(self, feature_id: Id) -> Optional[Feature]: ...

    @abstractmethod
    async def update_feature(self, feature_id: Id, data: FeatureUpdate) -> Feature: ...

    @abstractmethod
    async def delete_feature(self, feature_id: Id) -> bool:
        """Delete a feature and remove it from every role. Idempotent."""

    @abstractmethod
    async def list_features(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[FeatureSummary]: ...

    # Permissions

    @abstractmethod
    async def create_permission(self, data: PermissionCreate) -> Permission: ...

    @abstractmethod
    async def find_permission_by_name(self, name: str) -> Optional[Permission]: ...

    @abstractmethod
    async def find_permission_by_id(
        self, permission_id: Id
    ) -> Optional[Permission]: ...

    @abstractmethod
    async def update_permission(
        self, permission_id: Id, data: PermissionUpdate
    ) -> Permission: ...

    @abstractmethod
    async def delete_permission(self, permission_id: Id) -> bool:
        """Delete a permission and remove it from every grant. Idempotent."""

    @abstractmethod
    async def list_permissions(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[PermissionSummary]: ...

    # Aggregates

    async def get_feature_permissions(self, user_id: str, feature_name: str) -> Set[str]:
        """Names of the permissions the user's role holds over a feature."""
        user = await self.find_user_by_user_id_with_role(user_id)
        if user is None or user.role is None:
            return set()
        grant = user.role.grant_for(feature_name)
        if grant is None:
            return set()
        return grant.permission_names

    @abstractmethod
    async def get_counts(self) -> Counts: ...
