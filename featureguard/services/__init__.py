from featureguard.services.graph import RoleGraphService
from featureguard.services.hooks import CallbackObserver, RBACObserver, RoleUpdateEvent, notify

__all__ = [
    "RoleGraphService",
    "RBACObserver",
    "CallbackObserver",
    "RoleUpdateEvent",
    "notify",
]
