"""
Entity and input models for featureguard.
"""

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

__all__ = [
    "STANDARD_PERMISSIONS",
    "Id",
    "Permission",
    "Feature",
    "FeatureGrant",
    "Role",
    "ResolvedGrant",
    "RoleWithGrants",
    "User",
    "UserWithRole",
    "RoleSummary",
    "FeatureSummary",
    "PermissionSummary",
    "Page",
    "Counts",
    "PermissionCreate",
    "PermissionUpdate",
    "FeatureCreate",
    "FeatureUpdate",
    "RoleCreate",
    "RoleUpdate",
    "UserCreate",
    "UserUpdate",
]
