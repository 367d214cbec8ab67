"""
Request identity resolution.

The host application owns authentication. It either supplies a resolver
that turns a request into an Identity, or attaches ``user_id`` (and
optionally ``email``) to the request before authorization runs.
"""

import inspect
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from featureguard.errors.exceptions import UnauthorizedError


class Identity(BaseModel):
    """
    The caller behind a request.

    Attributes:
        user_id: External user identifier
        email: Optional email address
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None


ResolverResult = Union[Identity, Mapping[str, Any]]
IdentityResolver = Callable[[Any], Union[ResolverResult, Awaitable[ResolverResult]]]

_USER_ID_KEYS = ("user_id", "userId")


def _lookup(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def _attached_identity(request: Any) -> Optional[Identity]:
    # Starlette keeps per-request values on request.state
    for source in (request, getattr(request, "state", None)):
        for key in _USER_ID_KEYS:
            user_id = _lookup(source, key)
            if user_id:
                return Identity(user_id=str(user_id), email=_lookup(source, "email"))
    return None


def _coerce(result: Any) -> Identity:
    if isinstance(result, Identity):
        return result
    if isinstance(result, Mapping):
        user_id = result.get("user_id") or result.get("userId")
        if user_id:
            return Identity(user_id=str(user_id), email=result.get("email"))
    raise UnauthorizedError(message="Identity resolver returned no user_id")


async def resolve_identity(
    request: Any, resolver: Optional[IdentityResolver] = None
) -> Identity:
    """
    Determine who is making a request.

    Args:
        request: Framework request object, or any object/mapping carrying
            ``user_id``/``userId`` and ``email``
        resolver: Optional sync or async callable returning an Identity or a
            mapping with ``user_id`` and ``email``

    Returns:
        The resolved Identity

    Raises:
        UnauthorizedError: If no user id can be determined
    """
    if resolver is not None:
        result = resolver(request)
        if inspect.isawaitable(result):
            result = await result
        return _coerce(result)

    identity = _attached_identity(request)
    if identity is None:
        raise UnauthorizedError(message="Not authenticated")
    return identity
