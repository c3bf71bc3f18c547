"""
================================================================================
SERVICE CONTAINER - PROVIDER DISCOVERY & INITIALIZATION
================================================================================

Owns the two collaborator adapters the bridge talks to.

Layer 1: .env selects the PROVIDER FILE
  CONTROLLER_PROVIDER=simulated  →  access_bridge.providers.controller.simulated
  CLOUD_PROVIDER=simulated       →  access_bridge.providers.cloud.simulated

Layer 2: the provider file exports create_provider(settings), which builds the
  adapter from settings.

USAGE:

  container = ServiceContainer(settings)
  await container.initialize()
  controller = container.get_controller()

Pre-built adapters can be injected instead (tests, embedding):

  container = ServiceContainer(settings, controller=fake, cloud=fake_cloud)
"""

import importlib
import logging
from typing import Any, Dict, Optional

from access_bridge.config.settings import Settings
from access_bridge.core.exceptions import ConfigurationError, ServiceInitializationError
from access_bridge.providers.cloud.base import CloudAdapter
from access_bridge.providers.controller.base import ControllerAdapter

logger = logging.getLogger(__name__)

PROVIDER_PACKAGE = "access_bridge.providers"


class ServiceContainer:
    """Dependency container for the controller and cloud adapters."""

    def __init__(
        self,
        settings: Settings,
        controller: Optional[ControllerAdapter] = None,
        cloud: Optional[CloudAdapter] = None,
    ) -> None:
        self.settings = settings
        self._controller = controller
        self._cloud = cloud
        self._initialized = False

        logger.info("ServiceContainer instantiated")

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Resolve (if not injected) and initialize both adapters."""
        if self._initialized:
            return

        logger.info("=" * 80)
        logger.info("INITIALIZING SERVICE CONTAINER")
        logger.info("=" * 80)

        if self._controller is None:
            self._controller = self._load_provider("controller", self.settings.controller_provider)
        if self._cloud is None:
            self._cloud = self._load_provider("cloud", self.settings.cloud_provider)

        for kind, adapter in (("controller", self._controller), ("cloud", self._cloud)):
            try:
                await adapter.initialize()
            except Exception as e:
                logger.error(f"{kind} provider initialization failed: {str(e)}", exc_info=True)
                raise ServiceInitializationError(
                    f"Failed to initialize {kind} provider {type(adapter).__name__}: {str(e)}",
                    context={"provider": kind},
                ) from e
            logger.info(f"✓ {kind.upper()} initialized: {type(adapter).__name__}")

        self._initialized = True
        logger.info("✓ ServiceContainer initialized successfully")

    def _load_provider(self, kind: str, name: str) -> Any:
        """
        Import access_bridge.providers.<kind>.<name> and call create_provider(settings).

        Raises:
            ConfigurationError: Unknown provider name or malformed provider module
        """
        full_path = f"{PROVIDER_PACKAGE}.{kind}.{name}"
        logger.info(f"[Layer 1] Loading {kind} provider: {name} ({full_path})")

        try:
            module = importlib.import_module(full_path)
        except ModuleNotFoundError as e:
            if e.name == full_path:
                raise ConfigurationError(
                    f"Unknown {kind} provider '{name}'",
                    context={"provider": name, "module": full_path},
                ) from e
            raise ServiceInitializationError(
                f"Failed to import {kind} provider '{name}': {str(e)}"
            ) from e

        factory = getattr(module, "create_provider", None)
        if factory is None:
            raise ConfigurationError(
                f"Provider module {full_path} does not export 'create_provider'",
                context={"module": full_path},
            )

        adapter = factory(self.settings)
        logger.info(f"[Layer 2] Created {type(adapter).__name__}")
        return adapter

    async def shutdown(self) -> None:
        """Disconnect both adapters; errors are logged, not raised."""
        logger.info("Shutting down ServiceContainer...")

        for name, adapter in (("Controller", self._controller), ("Cloud", self._cloud)):
            if adapter is None:
                continue
            try:
                await adapter.disconnect()
                logger.info(f"✓ {name} disconnected")
            except Exception as e:
                logger.error(f"Error disconnecting {name}: {str(e)}")

        self._initialized = False
        logger.info("✓ ServiceContainer shutdown complete")

    # ========================================================================
    # ACCESSOR METHODS
    # ========================================================================

    def get_controller(self) -> ControllerAdapter:
        if self._controller is None:
            raise RuntimeError("Controller provider not initialized")
        return self._controller

    def get_cloud(self) -> CloudAdapter:
        if self._cloud is None:
            raise RuntimeError("Cloud provider not initialized")
        return self._cloud

    def get_all(self) -> Dict[str, Any]:
        return {"controller": self._controller, "cloud": self._cloud}
