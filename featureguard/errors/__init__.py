"""
Error handling module for featureguard.

This module provides the exception hierarchy shared by the storage adapters,
the authorization engine and the role-graph service.

Limitations:
- Exceptions carry an HTTP status code but no protocol-specific payload;
  translation into responses is left to framework glue.
"""

from featureguard.errors.exceptions import (
    AppError,
    ConfigurationError,
    ConflictError,
    DBError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

__all__ = [
    "AppError",
    "ValidationError",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "ConflictError",
    "DBError",
    "ConfigurationError",
]
