"""
Authorization decisions.

The engine answers one question: may this user exercise this permission on
this feature? It re-reads the user, role and grants from storage on every
call and never caches.
"""

from enum import Enum
from typing import Any, Optional, Set

from pydantic import BaseModel, ConfigDict

from featureguard.authorization.identity import IdentityResolver, resolve_identity
from featureguard.authorization.inference import infer_feature_permission
from featureguard.db.adapter import StorageAdapter
from featureguard.errors.exceptions import ForbiddenError, UnauthorizedError
from featureguard.logging import Logger, ensure_logger


class DenyReason(str, Enum):
    """Why a decision denied access."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    NO_ROLE = "NO_ROLE"
    FEATURE_DENIED = "FEATURE_DENIED"
    PERMISSION_DENIED = "PERMISSION_DENIED"


_DENY_MESSAGES = {
    DenyReason.UNAUTHENTICATED: "Not authenticated",
    DenyReason.NO_ROLE: "No role assigned",
    DenyReason.FEATURE_DENIED: "Access to feature denied",
    DenyReason.PERMISSION_DENIED: "Permission denied",
}


class Decision(BaseModel):
    """
    Outcome of an authorization check.

    A Decision is truthy exactly when access is allowed.

    Attributes:
        allowed: Whether access is granted
        reason: Why access was denied, None when allowed
        feature: Feature that was checked
        permission: Permission that was checked
    """

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[DenyReason] = None
    feature: Optional[str] = None
    permission: Optional[str] = None

    @classmethod
    def allow(cls, feature: str, permission: str) -> "Decision":
        return cls(allowed=True, feature=feature, permission=permission)

    @classmethod
    def deny(
        cls,
        reason: DenyReason,
        feature: Optional[str] = None,
        permission: Optional[str] = None,
    ) -> "Decision":
        return cls(allowed=False, reason=reason, feature=feature, permission=permission)

    def __bool__(self) -> bool:
        return self.allowed

    def raise_for_denial(self) -> None:
        """
        Raise the error matching a denial; do nothing when allowed.

        Raises:
            UnauthorizedError: For UNAUTHENTICATED
            ForbiddenError: For every other reason
        """
        if self.allowed:
            return
        details = {
            "reason": self.reason.value,
            "feature": self.feature,
            "permission": self.permission,
        }
        message = _DENY_MESSAGES[self.reason]
        if self.reason is DenyReason.UNAUTHENTICATED:
            raise UnauthorizedError(message=message, details=details)
        raise ForbiddenError(message=message, details=details)


class AuthorizationEngine:
    """
    Decide access from a user's role grants.

    Args:
        adapter: Storage adapter to read users and roles from
        identity_resolver: Optional callable mapping a request to an Identity
        logger: Optional logger

    Example:
        ```python
        engine = AuthorizationEngine(adapter)
        decision = await engine.decide("alice", "billing", "read")
        if not decision:
            print(decision.reason)
        ```
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        identity_resolver: Optional[IdentityResolver] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self.adapter = adapter
        self.identity_resolver = identity_resolver
        self.logger = ensure_logger(logger, __name__)

    async def decide(self, user_id: str, feature_name: str, permission_name: str) -> Decision:
        """
        Check one permission on one feature for a user.

        Args:
            user_id: External user id
            feature_name: Name of the feature to access
            permission_name: Name of the permission required

        Returns:
            An allowing Decision, or a denying one carrying the reason
        """
        user = await self.adapter.find_user_by_user_id_with_role(user_id)

        if user is None:
            reason = DenyReason.UNAUTHENTICATED
        elif user.role is None:
            reason = DenyReason.NO_ROLE
        else:
            grant = user.role.grant_for(feature_name)
            if grant is None:
                reason = DenyReason.FEATURE_DENIED
            elif permission_name not in grant.permission_names:
                reason = DenyReason.PERMISSION_DENIED
            else:
                return Decision.allow(feature_name, permission_name)

        self.logger.debug(
            f"Denied user_id={user_id} feature={feature_name} "
            f"permission={permission_name}: {reason.value}"
        )
        return Decision.deny(reason, feature_name, permission_name)

    async def decide_from_request(self, user_id: str, method: str, path: str) -> Decision:
        """Check a user against the feature and permission inferred from a route."""
        feature, permission = infer_feature_permission(method, path)
        return await self.decide(user_id, feature, permission)

    async def resolve_identity(self, request: Any):
        """Resolve the caller of a request with the configured resolver."""
        return await resolve_identity(request, self.identity_resolver)

    async def authorize(
        self,
        request: Any,
        feature: Optional[str] = None,
        permission: Optional[str] = None,
    ) -> Decision:
        """
        Resolve the caller of a request and decide access.

        When feature or permission is omitted it is inferred from the
        request's method and path.

        Returns:
            The Decision; UNAUTHENTICATED when no identity is available
        """
        try:
            identity = await self.resolve_identity(request)
        except UnauthorizedError:
            self.logger.debug("Denied request without identity")
            return Decision.deny(DenyReason.UNAUTHENTICATED, feature, permission)

        if feature is None or permission is None:
            inferred_feature, inferred_permission = infer_feature_permission(
                _request_method(request), _request_path(request)
            )
            feature = feature or inferred_feature
            permission = permission or inferred_permission

        return await self.decide(identity.user_id, feature, permission)

    async def get_feature_permissions(self, user_id: str, feature_name: str) -> Set[str]:
        """Names of the permissions a user holds over a feature."""
        return await self.adapter.get_feature_permissions(user_id, feature_name)

    async def get_user_role(self, user_id: str) -> Optional[str]:
        """Name of the user's role, or None."""
        user = await self.adapter.find_user_by_user_id_with_role(user_id)
        if user is None or user.role is None:
            return None
        return user.role.name


def _request_method(request: Any) -> str:
    if isinstance(request, dict):
        return request.get("method", "GET")
    return getattr(request, "method", "GET")


def _request_path(request: Any) -> str:
    if isinstance(request, dict):
        return request.get("path", "/")
    url = getattr(request, "url", None)
    if url is not None and hasattr(url, "path"):
        return url.path
    return getattr(request, "path", "/")
