"""
FastAPI glue for featureguard.

This module provides:
- require_permission: a route dependency that authorizes the request.
- register_exception_handlers: turns AppError into JSON error responses.

Example:
    ```python
    app = FastAPI()
    engine = AuthorizationEngine(adapter, identity_resolver=my_resolver)
    register_exception_handlers(app)

    @app.get("/billing/invoices")
    async def invoices(decision: Decision = Depends(require_permission(engine))):
        ...
    ```
"""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from featureguard.authorization.engine import AuthorizationEngine, Decision
from featureguard.errors.exceptions import AppError
from featureguard.logging import Logger, ensure_logger


class ErrorInfo(BaseModel):
    """
    Detailed error information.

    Attributes:
        code: Error code identifier
        message: Human-readable error message
        field: Optional field name that caused the error
        details: Optional additional error details
    """

    code: str = Field(..., description="Error code identifier")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused the error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Additional error details"
    )


class ErrorResponse(BaseModel):
    """Envelope for error responses."""

    success: bool = False
    message: str
    errors: List[ErrorInfo] = Field(default_factory=list)


def require_permission(
    engine: AuthorizationEngine,
    feature: Optional[str] = None,
    permission: Optional[str] = None,
):
    """
    Create a dependency that authorizes the current request.

    With no feature or permission the check is inferred from the route's
    method and path.

    Args:
        engine: Engine used for the decision
        feature: Feature to check, inferred when omitted
        permission: Permission to check, inferred when omitted

    Returns:
        A FastAPI dependency returning the allowing Decision

    Raises:
        UnauthorizedError: If the caller cannot be identified
        ForbiddenError: If access is denied
    """

    async def dependency(request: Request) -> Decision:
        decision = await engine.authorize(request, feature=feature, permission=permission)
        decision.raise_for_denial()
        return decision

    return dependency


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    Handler for AppError and its subclasses.

    Args:
        request: FastAPI request
        exc: AppError instance

    Returns:
        JSON response with error details
    """
    errors = [ErrorInfo(code=exc.code, message=exc.message)]

    # Add field validation errors if available
    if getattr(exc, "fields", None):
        errors = [
            ErrorInfo(
                code=field_error.get("code", exc.code),
                message=field_error.get("message", exc.message),
                field=field_error.get("field", ""),
            )
            for field_error in exc.fields
        ]

    response = ErrorResponse(message=exc.message, errors=errors)
    return JSONResponse(
        status_code=int(exc.status_code),
        content=jsonable_encoder(response, exclude_none=True),
    )


def register_exception_handlers(app: FastAPI, logger: Optional[Logger] = None) -> None:
    """
    Register the featureguard exception handler on an application.

    Args:
        app: FastAPI application instance
        logger: Optional logger
    """
    log = ensure_logger(logger, __name__)
    app.add_exception_handler(AppError, app_error_handler)
    log.debug("featureguard exception handlers registered")
