"""
Observers notified after role-graph mutations commit.

Observers are best-effort: the mutation has already been persisted when
they run, so a failing observer is logged and otherwise ignored.
"""

import inspect
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict

from featureguard.logging import Logger
from featureguard.models.entities import Role, User


class RoleUpdateEvent(BaseModel):
    """
    Payload of on_role_update.

    Attributes:
        user_id: User whose role changed
        role: The newly assigned role
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role


class RBACObserver:
    """
    Base observer with no-op hooks. Subclass and override what you need.

    Hooks may be plain or ``async`` methods.
    """

    def on_user_register(self, user: User) -> Union[None, Awaitable[None]]:
        return None

    def on_role_update(self, event: RoleUpdateEvent) -> Union[None, Awaitable[None]]:
        return None


class CallbackObserver(RBACObserver):
    """
    Observer built from plain callables.

    Example:
        ```python
        observer = CallbackObserver(on_user_register=lambda user: print(user.user_id))
        ```
    """

    def __init__(
        self,
        on_user_register: Optional[Callable[[User], Any]] = None,
        on_role_update: Optional[Callable[[RoleUpdateEvent], Any]] = None,
    ) -> None:
        self._on_user_register = on_user_register
        self._on_role_update = on_role_update

    def on_user_register(self, user: User):
        if self._on_user_register is not None:
            return self._on_user_register(user)
        return None

    def on_role_update(self, event: RoleUpdateEvent):
        if self._on_role_update is not None:
            return self._on_role_update(event)
        return None


async def notify(
    observers: Iterable[RBACObserver], hook: str, payload: Any, logger: Logger
) -> None:
    """
    Call ``hook`` on every observer, awaiting async hooks.

    An exception from one observer is logged with its traceback and does not
    stop the remaining observers.
    """
    for observer in observers:
        try:
            result = getattr(observer, hook)(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Observer {type(observer).__name__}.{hook} failed")
