"""
Authorization for featureguard.

This module provides:
- AuthorizationEngine: explicit and route-inferred access decisions.
- Decision and DenyReason: the outcome of a check.
- infer_feature_permission: pure mapping from (method, path) to
  (feature, permission).
- Identity and resolve_identity: request-to-user resolution.
"""

from featureguard.authorization.engine import AuthorizationEngine, Decision, DenyReason
from featureguard.authorization.identity import Identity, IdentityResolver, resolve_identity
from featureguard.authorization.inference import (
    DEFAULT_FEATURE,
    infer_feature,
    infer_feature_permission,
    infer_permission,
)

__all__ = [
    "AuthorizationEngine",
    "Decision",
    "DenyReason",
    "Identity",
    "IdentityResolver",
    "resolve_identity",
    "DEFAULT_FEATURE",
    "infer_feature",
    "infer_permission",
    "infer_feature_permission",
]
