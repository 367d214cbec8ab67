"""
Entity types shared by every storage adapter.

These are the only shapes that cross the adapter boundary. Ids are opaque
strings whatever the backend stores natively.
"""

from datetime import datetime
from typing import Generic, List, Optional, Set, TypeVar

from pydantic import BaseModel, ConfigDict, Field

Id = str

T = TypeVar("T")

STANDARD_PERMISSIONS = (
    ("read", "View and access resources"),
    ("create", "Add new resources"),
    ("update", "Modify existing resources"),
    ("delete", "Remove resources"),
    ("sudo", "Full administrative access"),
)


class Entity(BaseModel):
    """Common fields for every persisted record."""

    model_config = ConfigDict(frozen=True)

    id: Id
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Permission(Entity):
    """An atomic capability name such as ``read`` or ``sudo``."""

    name: str
    description: str = ""


class Feature(Entity):
    """A named application module that can be protected independently."""

    name: str
    description: str = ""


class FeatureGrant(BaseModel):
    """
    The permissions a role holds over one feature.

    Attributes:
        feature_id: Id of the granted feature
        permission_ids: Ids of the permissions held over that feature
    """

    model_config = ConfigDict(frozen=True)

    feature_id: Id
    permission_ids: Set[Id] = Field(default_factory=set)


class Role(Entity):
    """A named bundle of per-feature grants, with grants as raw ids."""

    name: str
    description: str = ""
    grants: List[FeatureGrant] = Field(default_factory=list)


class ResolvedGrant(BaseModel):
    """A grant expanded to full Feature and Permission records."""

    model_config = ConfigDict(frozen=True)

    feature: Feature
    permissions: List[Permission] = Field(default_factory=list)

    @property
    def permission_names(self) -> Set[str]:
        return {permission.name for permission in self.permissions}


class RoleWithGrants(Entity):
    """A role joined with its resolved grants."""

    name: str
    description: str = ""
    grants: List[ResolvedGrant] = Field(default_factory=list)

    def grant_for(self, feature_name: str) -> Optional[ResolvedGrant]:
        """Return the grant over the named feature, if the role holds one."""
        for grant in self.grants:
            if grant.feature.name == feature_name:
                return grant
        return None

    def to_feature_grants(self) -> List[FeatureGrant]:
        """Collapse the resolved grants back to id form."""
        return [
            FeatureGrant(
                feature_id=grant.feature.id,
                permission_ids={permission.id for permission in grant.permissions},
            )
            for grant in self.grants
        ]


class User(Entity):
    """
    Lightweight reference to a user owned by the host application.

    Attributes:
        user_id: External identity key, unique and immutable
        name: Display name
        email: Optional email, unique among users that have one
        role_id: Id of the assigned role, if any
    """

    user_id: str
    name: str = ""
    email: Optional[str] = None
    role_id: Optional[Id] = None


class UserWithRole(User):
    """A user joined with its role and the role's resolved grants."""

    role: Optional[RoleWithGrants] = None


class RoleSummary(Role):
    """Role listing entry with usage counts."""

    user_count: int = 0
    feature_count: int = 0


class FeatureSummary(Feature):
    """Feature listing entry with the number of roles granting it."""

    role_count: int = 0


class PermissionSummary(Permission):
    """Permission listing entry with the number of roles using it."""

    role_count: int = 0


class Page(BaseModel, Generic[T]):
    """
    One page of a listing.

    Attributes:
        items: Records in the requested window
        total: Number of records matching the query, across all pages
    """

    items: List[T] = Field(default_factory=list)
    total: int = 0


class Counts(BaseModel):
    """Number of records per entity type."""

    users: int = 0
    roles: int = 0
    features: int = 0
    permissions: int = 0
