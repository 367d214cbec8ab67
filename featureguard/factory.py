"""
Settings-driven construction of the featureguard components.

This module wires a storage adapter, an authorization engine and a
role-graph service from FeatureGuardSettings, sharing one logger named
after APP_NAME.
"""

from typing import Iterable, Optional

from featureguard.authorization.engine import AuthorizationEngine
from featureguard.authorization.identity import IdentityResolver
from featureguard.config import FeatureGuardSettings, get_settings
from featureguard.db.adapter import StorageAdapter
from featureguard.db.factory import create_adapter
from featureguard.logging import Logger, ensure_logger
from featureguard.services.graph import RoleGraphService
from featureguard.services.hooks import RBACObserver


class FeatureGuard:
    """
    The adapter, engine and service built from one set of settings.

    Attributes:
        settings: Settings the components were built from
        adapter: Storage adapter, opened by start()
        engine: Authorization engine reading from the adapter
        service: Role-graph service writing through the adapter
        logger: Logger shared by all three
    """

    def __init__(
        self,
        settings: FeatureGuardSettings,
        adapter: StorageAdapter,
        engine: AuthorizationEngine,
        service: RoleGraphService,
        logger: Logger,
    ) -> None:
        self.settings = settings
        self.adapter = adapter
        self.engine = engine
        self.service = service
        self.logger = logger

    async def start(self) -> None:
        """Create indexes or tables and the standard permissions."""
        await self.adapter.init()
        self.logger.info(f"{self.settings.APP_NAME} storage ready")

    async def close(self) -> None:
        await self.adapter.close()


def create_featureguard(
    settings: Optional[FeatureGuardSettings] = None,
    identity_resolver: Optional[IdentityResolver] = None,
    observers: Iterable[RBACObserver] = (),
    logger: Optional[Logger] = None,
) -> FeatureGuard:
    """
    Build the featureguard components from settings.

    Args:
        settings: Optional settings, loaded from the environment when omitted
        identity_resolver: Optional resolver handed to the engine
        observers: Observers handed to the service
        logger: Optional logger; otherwise one named APP_NAME is configured
            from DEBUG, LOG_LEVEL and LOG_JSON

    Returns:
        An unopened FeatureGuard; call ``await guard.start()`` before use

    Raises:
        ConfigurationError: If the storage settings are inconsistent
    """
    settings = settings or get_settings()
    log = ensure_logger(logger, settings.APP_NAME, settings)

    adapter = create_adapter(settings.storage_config(), logger=log)
    engine = AuthorizationEngine(adapter, identity_resolver=identity_resolver, logger=log)
    service = RoleGraphService(
        adapter,
        default_role_name=settings.DEFAULT_ROLE,
        observers=list(observers),
        logger=log,
    )
    log.debug(
        f"featureguard configured: storage={settings.STORAGE_TYPE} "
        f"default_role={settings.DEFAULT_ROLE}"
    )
    return FeatureGuard(settings, adapter, engine, service, log)
