"""
Exception hierarchy for featureguard.

Every error raised by the storage adapters, the authorization engine and the
role-graph service derives from AppError. Each class carries an HTTP status
code so framework glue can translate it without knowing the taxonomy.

Subclasses only declare their defaults; construction is shared:

    raise ConflictError(message="Role 'manager' already exists",
                        details={"name": "manager"})
"""

from http import HTTPStatus
from typing import Any, Dict, List, Optional, Union


class AppError(Exception):
    """
    Base exception for all featureguard errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        status_code: HTTP status a web layer should answer with
        details: Extra context for logs and error bodies
    """

    default_message = "An unexpected error occurred"
    default_code = "ERROR"
    default_status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """
    Caller input is malformed, e.g. a grant list naming a feature twice.

    Attributes:
        fields: Per-field problems, each a dict with field/message/code
    """

    default_message = "Validation error"
    default_code = "VALIDATION_ERROR"
    default_status = HTTPStatus.BAD_REQUEST

    def __init__(
        self,
        message: Optional[str] = None,
        fields: Optional[List[Dict[str, Any]]] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.fields = fields or []
        if self.fields:
            details = {**(details or {}), "fields": self.fields}
        super().__init__(message=message, code=code, details=details)


class NotFoundError(AppError):
    """A referenced user, role, feature or permission does not exist."""

    default_message = "Resource not found"
    default_code = "NOT_FOUND"
    default_status = HTTPStatus.NOT_FOUND

    def __init__(
        self,
        message: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Union[str, int]] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        if resource_type and resource_id:
            message = f"{resource_type} with id '{resource_id}' not found"
            details = {
                **(details or {}),
                "resource_type": resource_type,
                "resource_id": resource_id,
            }
        super().__init__(message=message, code=code, details=details)


class UnauthorizedError(AppError):
    """The caller's identity cannot be established."""

    default_message = "Authentication required"
    default_code = "UNAUTHORIZED"
    default_status = HTTPStatus.UNAUTHORIZED


class ForbiddenError(AppError):
    """A role, feature or permission check denied access."""

    default_message = "Permission denied"
    default_code = "FORBIDDEN"
    default_status = HTTPStatus.FORBIDDEN


class ConflictError(AppError):
    """A unique name is taken, or a delete is blocked by references."""

    default_message = "Resource conflict"
    default_code = "CONFLICT"
    default_status = HTTPStatus.CONFLICT


class DBError(AppError):
    """Storage or driver failure."""

    default_message = "Database error"
    default_code = "DB_ERROR"


class ConfigurationError(AppError):
    default_message = "Invalid configuration"
    default_code = "CONFIGURATION_ERROR"
