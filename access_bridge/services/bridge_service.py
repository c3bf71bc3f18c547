"""
================================================================================
FILE: access_bridge/services/bridge_service.py
================================================================================

PURPOSE:
    Orchestrator. Owns the service lifecycle, wires the resilience components
    around the two collaborator adapters, synchronizes doors, routes unlock
    commands (cloud → controller) and door events (controller → cloud), and
    exposes aggregate stats and health.

STATE MACHINE:
    STOPPED → STARTING → RUNNING → STOPPING → STOPPED
    any state → ERROR on a failure during initialize/start/stop (re-raised)

WORKFLOW:
    initialize(settings):
        1. Container resolves + initializes adapters
        2. Build breakers, retry policy, mapping store, translator, monitor
        3. Hand the cloud side a ControllerEndpoint
        4. Load persisted mappings → STOPPED
    start():
        1. Authenticate cloud, then controller
        2. sync_doors()
        3. Start event translator and health monitor
        4. Subscribe to unlock commands and door events → RUNNING
    stop():
        health monitor → event translator → listeners/adapters → mapping flush

UNLOCK PATH:
    retry_with_backoff( circuit_breaker.execute( controller.unlock ) )
    - an unlock that returns False is raised as ControllerError
    - breaker rejections are not retried

KEY FACTS:
    - Collaborator failures after start are counted in stats, never crash the service
    - An Unhealthy dependency degrades the service; it stays RUNNING
    - get_stats() returns a copy
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from access_bridge.config.settings import Settings
from access_bridge.container.service_container import ServiceContainer
from access_bridge.core.circuit_breaker import CircuitBreaker, CircuitStateChange
from access_bridge.core.exceptions import (
    CloudError,
    ControllerError,
    ServiceStateError,
)
from access_bridge.core.health_monitor import (
    HealthCheckResult,
    HealthMonitor,
    HealthStatus,
    StatusChange,
)
from access_bridge.core.notifier import Notifier
from access_bridge.core.retry import RetryConditions, RetryOptions, retry_with_backoff
from access_bridge.core.webhook_verifier import WebhookVerifier
from access_bridge.providers.controller.base import ControllerEndpoint
from access_bridge.services.event_translator import EventTranslator
from access_bridge.services.mapping_service import MappingInput, MappingService
from access_bridge.services.schemas import (
    BridgeStats,
    DoorEvent,
    DoorMapping,
    DoorsSynced,
    DoorUnlocked,
    EventReady,
    FailedDoor,
    HealthChanged,
    MappingChange,
    MappingsBulkChange,
    MappingUpdate,
    ServiceState,
    StateChanged,
    SyncSummary,
    UnlockCommand,
)
from access_bridge.utils.helpers import format_duration, utc_now

logger = logging.getLogger(__name__)

CONTROLLER = "controller"
CLOUD = "cloud"


class BridgeService:
    """Door-access bridge orchestrator."""

    def __init__(self, container: Optional[ServiceContainer] = None):
        """
        Args:
            container: Pre-built container (e.g. with injected adapters).
                       Built from settings in initialize() when omitted.
        """
        self._container = container
        self._state = ServiceState.STOPPED
        self._stats = BridgeStats()
        self._initialized = False
        self._site_id: Optional[str] = None

        self.settings: Optional[Settings] = None
        self.mapping_service: Optional[MappingService] = None
        self.event_translator: Optional[EventTranslator] = None
        self.health_monitor: Optional[HealthMonitor] = None
        self.controller_breaker: Optional[CircuitBreaker] = None
        self.cloud_breaker: Optional[CircuitBreaker] = None
        self.webhook_verifier: Optional[WebhookVerifier] = None
        self.retry_options = RetryOptions()

        self.notifier: Notifier[Any] = Notifier("BridgeService")

    def subscribe(self, callback: Callable[[Any], Any]) -> Callable[[], None]:
        """Receive StateChanged, DoorsSynced, DoorUnlocked, HealthChanged and mapping messages."""
        return self.notifier.subscribe(callback)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def initialize(self, settings: Settings) -> None:
        """
        Construct and wire every component, then load persisted mappings.

        Raises:
            ConfigurationError: Invalid configuration (state → ERROR)
            ServiceInitializationError: Adapter failed to initialize (state → ERROR)
        """
        if self._state in (ServiceState.STARTING, ServiceState.RUNNING, ServiceState.STOPPING):
            raise ServiceStateError(f"Cannot initialize while {self._state.value}")

        try:
            logger.info("=" * 80)
            logger.info("INITIALIZING BRIDGE SERVICE")
            logger.info("=" * 80)

            self.settings = settings

            if settings.webhook_enabled:
                self.webhook_verifier = WebhookVerifier(
                    settings.webhook_secret, verify=settings.webhook_verify_signature
                )

            if self._container is None:
                self._container = ServiceContainer(settings)
            await self._container.initialize()

            self.controller_breaker = CircuitBreaker(CONTROLLER, **settings.breaker_kwargs())
            self.cloud_breaker = CircuitBreaker(CLOUD, **settings.breaker_kwargs())
            self.controller_breaker.subscribe(self._on_breaker_change)
            self.cloud_breaker.subscribe(self._on_breaker_change)

            self.retry_options = RetryOptions.from_settings(
                settings,
                should_retry=RetryConditions.not_circuit_open,
                on_retry=self._on_unlock_retry,
            )

            self.mapping_service = MappingService(
                settings.mappings_file, save_delay=settings.mapping_save_delay
            )
            self.mapping_service.subscribe(self._on_mapping_change)

            self.event_translator = EventTranslator(
                deduplication_window=settings.event_dedup_window,
                max_queue_size=settings.event_max_queue_size,
                processing_delay=settings.event_processing_delay,
                batch_size=settings.event_batch_size,
                max_attempts=settings.event_max_attempts,
            )
            self.event_translator.add_handler(self._forward_event)

            self.health_monitor = HealthMonitor(
                check_interval=settings.health_check_interval,
                failure_threshold=settings.health_failure_threshold,
                timeout=settings.health_check_timeout,
            )
            self.health_monitor.subscribe(self._on_health_change)

            endpoint = self._controller_endpoint(settings)
            if endpoint is not None:
                self._container.get_cloud().set_controller_endpoint(endpoint)
            else:
                logger.warning("No controller credentials configured; cloud cannot reach the controller directly")

            await self.mapping_service.load()
            self._stats.active_mappings = self.mapping_service.count()

            self._initialized = True
            self._set_state(ServiceState.STOPPED)
            logger.info(f"✓ Bridge service initialized ({self._stats.active_mappings} mappings)")

        except Exception as e:
            self._set_state(ServiceState.ERROR)
            self._record_error(e)
            logger.error(f"Bridge initialization failed: {str(e)}", exc_info=True)
            raise

    async def start(self) -> None:
        """
        Authenticate, sync doors, start background components and listeners.

        Raises:
            ServiceStateError: initialize() has not completed
            DependencyError: Authentication or door discovery failed (state → ERROR)
        """
        if not self._initialized:
            raise ServiceStateError("Bridge service not initialized")
        if self._state == ServiceState.RUNNING:
            logger.warning("Bridge service already running")
            return

        self._set_state(ServiceState.STARTING)
        try:
            await self._container.initialize()
            controller = self._container.get_controller()
            cloud = self._container.get_cloud()

            logger.info("Authenticating with cloud service...")
            if not await cloud.authenticate():
                raise CloudError("Cloud authentication failed")

            logger.info("Authenticating with door controller...")
            if not await controller.authenticate():
                raise ControllerError("Controller authentication failed")

            await self.sync_doors()

            self.event_translator.start()

            if self.settings.health_check_enabled:
                self._register_health_checks()
                self.health_monitor.start()

            await cloud.start_command_listener(self.handle_unlock_command)
            if controller.supports_events:
                await controller.start_event_listener(self.handle_door_event)
            else:
                logger.warning("Controller does not support events; door state will not be forwarded")

            self._stats.started_at = utc_now()
            self._set_state(ServiceState.RUNNING)
            logger.info("✓ Bridge service started successfully")

        except Exception as e:
            await self._rollback_start()
            self._set_state(ServiceState.ERROR)
            self._record_error(e)
            logger.error(f"Bridge start failed: {str(e)}", exc_info=True)
            raise

    async def _rollback_start(self) -> None:
        """Undo whatever a failed start() already brought up."""
        await self.health_monitor.stop()
        if self.event_translator.is_processing:
            await self.event_translator.stop()
        try:
            await self._container.get_controller().stop_event_listener()
            await self._container.get_cloud().stop_command_listener()
        except Exception as e:
            logger.warning(f"Listener cleanup after failed start raised: {str(e)}")

    async def stop(self) -> None:
        """Tear down in reverse order. No-op when already STOPPED."""
        if self._state == ServiceState.STOPPED:
            logger.warning("Bridge service already stopped")
            return
        if not self._initialized:
            self._set_state(ServiceState.STOPPED)
            return

        logger.info("Stopping bridge service...")
        self._set_state(ServiceState.STOPPING)
        try:
            await self.health_monitor.stop()
            if self.event_translator.is_processing:
                await self.event_translator.stop()

            controller = self._container.get_controller()
            cloud = self._container.get_cloud()
            await controller.stop_event_listener()
            await cloud.stop_command_listener()
            await self._container.shutdown()

            await self.mapping_service.cleanup()

            self._set_state(ServiceState.STOPPED)
            if self._stats.started_at is not None:
                uptime = (utc_now() - self._stats.started_at).total_seconds()
                logger.info(f"✓ Bridge service stopped (uptime {format_duration(uptime)})")
            else:
                logger.info("✓ Bridge service stopped")

        except Exception as e:
            self._set_state(ServiceState.ERROR)
            self._record_error(e)
            logger.error(f"Bridge stop failed: {str(e)}", exc_info=True)
            raise

    async def shutdown(self) -> None:
        """Stop, then release timers, listeners and queued events."""
        if self._state != ServiceState.STOPPED:
            await self.stop()
        if self.event_translator is not None:
            await self.event_translator.shutdown()
        if self.health_monitor is not None:
            await self.health_monitor.shutdown()
        for breaker in (self.controller_breaker, self.cloud_breaker):
            if breaker is not None:
                breaker.shutdown()

    # ========================================================================
    # DOOR SYNCHRONIZATION
    # ========================================================================

    async def sync_doors(self) -> SyncSummary:
        """
        Discover controller doors and make sure each one has a mapping.

        Cloud registration is best-effort: a door whose registration fails is
        still mapped locally. Per-door failures are collected, never raised.

        Raises:
            DependencyError / CircuitBreakerOpenError: Discovery itself failed
        """
        self._require_initialized()
        controller = self._container.get_controller()
        cloud = self._container.get_cloud()

        logger.info("Starting door synchronization...")
        try:
            doors = await self.controller_breaker.execute(controller.discover_doors)
        except Exception as e:
            self._record_error(e)
            logger.error(f"Door synchronization failed: {str(e)}")
            raise

        summary = SyncSummary(total=len(doors))
        if not doors:
            logger.warning("No controller doors found to synchronize")

        for index, door in enumerate(doors, start=1):
            logger.info(f"Processing door {index}/{len(doors)}: {door.name} ({door.id})")
            try:
                existing = self.mapping_service.get_mapping_by_controller_door_id(door.id)
                if existing is not None:
                    logger.info(f"Door already mapped, skipping: {door.name}")
                    summary.synced += 1
                    summary.already_synced += 1
                    if existing.enabled:
                        await self._start_cloud_monitoring(existing)
                    continue

                metadata = dict(door.metadata)
                if door.floor:
                    metadata["floor"] = door.floor
                mapping = DoorMapping(
                    id=f"mapping-{door.id}",
                    cloud_lock_id=f"lock-{door.id}",
                    controller_door_id=door.id,
                    site_id=self.get_site_id(),
                    name=door.name,
                    enabled=True,
                    metadata=metadata,
                )

                try:
                    registered = await self.cloud_breaker.execute(cloud.register_door, mapping)
                    if registered:
                        await self._start_cloud_monitoring(mapping)
                    else:
                        logger.warning(f"⚠ Cloud registration skipped for: {mapping.name}")
                except Exception as e:
                    logger.warning(
                        f"⚠ Cloud integration unavailable for {mapping.name}: {str(e)} "
                        f"(door stays available locally)"
                    )

                await self.add_door_mapping(mapping)
                summary.synced += 1
                logger.info(f"✓ Door synced ({summary.synced}/{len(doors)}): {mapping.name}")

            except Exception as e:
                logger.error(f"Error syncing door {door.name}: {str(e)}")
                summary.failed += 1
                summary.failed_doors.append(FailedDoor(door_id=door.id, name=door.name, error=str(e)))

        self._stats.active_mappings = self.mapping_service.count()
        summary.active_mappings = self._stats.active_mappings

        logger.info("===== Door Sync Summary =====")
        logger.info(f"Total doors found: {summary.total}")
        logger.info(f"Successfully synced: {summary.synced} ({summary.already_synced} already mapped)")
        logger.info(f"Failed: {summary.failed}")
        logger.info(f"Active mappings: {summary.active_mappings}")
        for failed in summary.failed_doors:
            logger.warning(f"  - {failed.name}: {failed.error}")
        logger.info("=============================")

        self.notifier.emit(DoorsSynced(summary=summary.model_copy(deep=True)))
        return summary

    async def _start_cloud_monitoring(self, mapping: DoorMapping) -> None:
        cloud = self._container.get_cloud()
        try:
            started = await self.cloud_breaker.execute(cloud.start_door, mapping.cloud_lock_id)
        except Exception as e:
            logger.warning(f"⚠ Cloud monitoring unavailable for {mapping.name}: {str(e)}")
            return
        if started:
            logger.info(f"✓ Cloud sync enabled for: {mapping.name}")
        else:
            logger.warning(f"⚠ Cloud monitoring unavailable for: {mapping.name}")

    def get_site_id(self) -> str:
        if self._site_id is None:
            self._site_id = self.settings.resolved_site_id
            if not self.settings.site_id:
                logger.info(f"Generated site ID: {self._site_id}")
        return self._site_id

    # ========================================================================
    # UNLOCK PATH (cloud / webhook → controller)
    # ========================================================================

    async def handle_unlock_command(self, command: UnlockCommand) -> None:
        """Unlock command from the cloud listener. Never raises."""
        logger.info(f"Handling unlock command for lock: {command.lock_id}")

        mapping = self.mapping_service.get_mapping(command.lock_id)
        if mapping is None:
            logger.warning(f"No mapping found for lock: {command.lock_id}")
            return
        if not mapping.enabled:
            logger.warning(f"Mapping disabled for lock: {command.lock_id}")
            return

        try:
            await self.unlock_door(mapping, source="cloud", user=command.user_name or command.user_id)
        except Exception as e:
            logger.error(f"Unlock command failed for {mapping.name}: {str(e)}")

    async def unlock_door(
        self, mapping: DoorMapping, source: str = "api", user: Optional[str] = None
    ) -> None:
        """
        Unlock the controller door behind a mapping.

        Raises:
            ControllerError: Controller refused or failed the unlock
            CircuitBreakerOpenError: Controller breaker is open
        """
        self._require_initialized()
        controller = self._container.get_controller()

        async def call_controller() -> bool:
            if not await controller.unlock(mapping.controller_door_id):
                raise ControllerError(
                    f"Controller refused to unlock door {mapping.controller_door_id}",
                    context={"door_id": mapping.controller_door_id},
                )
            return True

        async def attempt() -> bool:
            return await self.controller_breaker.execute(call_controller)

        try:
            await retry_with_backoff(attempt, self.retry_options)
        except Exception as e:
            self._record_error(e)
            logger.error(f"Failed to unlock door {mapping.name}: {str(e)}")
            raise

        self._stats.unlocks_processed += 1
        logger.info(f"✓ Door unlocked: {mapping.name} (source={source}" + (f", user={user})" if user else ")"))
        self.notifier.emit(DoorUnlocked(mapping=mapping, source=source, user=user))

    def _on_unlock_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        logger.warning(f"Unlock attempt {attempt} failed ({str(error)}); retrying in {delay:.2f}s")

    # ========================================================================
    # EVENT PATH (controller → cloud)
    # ========================================================================

    async def handle_door_event(self, event: DoorEvent) -> None:
        """Door event from the controller listener. Never raises."""
        try:
            logger.debug(f"Handling door event: {event.type.value} for door: {event.door_id}")

            mapping = self.mapping_service.get_mapping_by_controller_door_id(event.door_id)
            if mapping is None:
                logger.debug(f"No mapping found for controller door: {event.door_id}")
                return
            if not mapping.enabled:
                logger.debug(f"Mapping disabled for door: {mapping.name}")
                return

            if self.event_translator.translate_and_queue(event, mapping):
                logger.debug(f"Event queued: {event.type.value} for door {mapping.name}")
        except Exception as e:
            self._record_error(e)
            logger.error(f"Error handling door event: {str(e)}", exc_info=True)

    async def _forward_event(self, message: EventReady) -> bool:
        cloud = self._container.get_cloud()
        try:
            sent = await self.cloud_breaker.execute(
                cloud.send_door_event, message.event.lock_id, message.event
            )
        except Exception as e:
            self._record_error(e)
            logger.warning(f"Forwarding event {message.event_id} failed (attempt {message.attempt}): {str(e)}")
            return False

        if not sent:
            logger.warning(f"Cloud rejected event {message.event_id} (attempt {message.attempt})")
            return False

        self._stats.events_forwarded += 1
        logger.debug(f"Event sent to cloud for lock {message.event.lock_id}: {message.event.event_type}")
        return True

    # ========================================================================
    # MAPPINGS
    # ========================================================================

    async def add_door_mapping(self, data: MappingInput) -> DoorMapping:
        self._require_initialized()
        return await self.mapping_service.add_mapping(data)

    async def update_door_mapping(
        self, cloud_lock_id: str, updates: Union[MappingUpdate, Dict[str, Any]]
    ) -> DoorMapping:
        self._require_initialized()
        return await self.mapping_service.update_mapping(cloud_lock_id, updates)

    async def remove_door_mapping(self, cloud_lock_id: str) -> DoorMapping:
        """
        Raises:
            MappingNotFoundError: No mapping for cloud_lock_id
        """
        self._require_initialized()
        removed = await self.mapping_service.remove_mapping(cloud_lock_id)

        if self._state == ServiceState.RUNNING:
            cloud = self._container.get_cloud()
            try:
                await self.cloud_breaker.execute(cloud.stop_door, cloud_lock_id)
            except Exception as e:
                logger.warning(f"Could not stop cloud monitoring for {cloud_lock_id}: {str(e)}")
        return removed

    def get_door_mappings(self) -> List[DoorMapping]:
        self._require_initialized()
        return self.mapping_service.get_all_mappings()

    def get_door_mapping(self, cloud_lock_id: str) -> Optional[DoorMapping]:
        self._require_initialized()
        return self.mapping_service.get_mapping(cloud_lock_id)

    def _on_mapping_change(self, message: Union[MappingChange, MappingsBulkChange]) -> None:
        self._stats.active_mappings = self.mapping_service.count()
        if isinstance(message, MappingChange):
            self.notifier.emit(message)

    # ========================================================================
    # HEALTH
    # ========================================================================

    def _register_health_checks(self) -> None:
        controller = self._container.get_controller()
        cloud = self._container.get_cloud()

        async def controller_probe() -> HealthCheckResult:
            connected = await controller.check_connection()
            return HealthCheckResult(
                HealthStatus.HEALTHY if connected else HealthStatus.UNHEALTHY,
                message="Controller connected" if connected else "Controller disconnected",
                details={"connected": connected, "circuit": self.controller_breaker.get_state().value},
            )

        async def cloud_probe() -> HealthCheckResult:
            connected = await cloud.check_connection()
            return HealthCheckResult(
                HealthStatus.HEALTHY if connected else HealthStatus.UNHEALTHY,
                message="Cloud connected" if connected else "Cloud disconnected",
                details={
                    "connected": connected,
                    "active_doors": len(cloud.active_doors()),
                    "circuit": self.cloud_breaker.get_state().value,
                },
            )

        self.health_monitor.register_component(CONTROLLER, controller_probe)
        self.health_monitor.register_component(CLOUD, cloud_probe)

    def _on_health_change(self, change: StatusChange) -> None:
        logger.info(
            f"Health status changed for {change.component}: "
            f"{change.current_status.value} - {change.health.message}"
        )
        if change.current_status == HealthStatus.UNHEALTHY:
            if change.component == CONTROLLER:
                logger.error("Controller is unhealthy - door unlocks may fail")
            elif change.component == CLOUD:
                logger.error("Cloud is unhealthy - event forwarding may be delayed (events stay queued)")

        self.notifier.emit(
            HealthChanged(
                component=change.component,
                status=change.current_status.value,
                message=change.health.message,
                details=dict(change.health.details),
            )
        )

    def _on_breaker_change(self, change: CircuitStateChange) -> None:
        logger.warning(
            f"Circuit breaker '{change.name}': {change.previous.value} → {change.current.value}"
        )

    def get_health(self) -> Dict[str, Any]:
        """Aggregated health snapshot."""
        self._require_initialized()
        return {
            "overall": self.health_monitor.get_overall_health().value,
            "state": self._state.value,
            "components": [h.to_dict() for h in self.health_monitor.get_all_health()],
            "stats": self.get_stats().model_dump(mode="json"),
            "circuit_breakers": {
                CONTROLLER: self.controller_breaker.get_stats().to_dict(),
                CLOUD: self.cloud_breaker.get_stats().to_dict(),
            },
            "event_queue": self.event_translator.get_stats(),
        }

    # ========================================================================
    # STATE & STATS
    # ========================================================================

    def get_state(self) -> ServiceState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ServiceState.RUNNING

    def get_stats(self) -> BridgeStats:
        active = self.mapping_service.count() if self.mapping_service else self._stats.active_mappings
        return self._stats.model_copy(update={"state": self._state, "active_mappings": active})

    def _set_state(self, state: ServiceState) -> None:
        previous = self._state
        self._state = state
        self._stats.state = state
        if previous != state:
            logger.info(f"Bridge service state changed: {previous.value} → {state.value}")
            self.notifier.emit(StateChanged(previous=previous, current=state))

    def _record_error(self, error: BaseException) -> None:
        self._stats.errors += 1
        self._stats.last_error = str(error)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise ServiceStateError("Bridge service not initialized")

    @staticmethod
    def _controller_endpoint(settings: Settings) -> Optional[ControllerEndpoint]:
        if settings.controller_username and settings.controller_password:
            return ControllerEndpoint(
                settings.controller_base_url,
                settings.controller_username,
                settings.controller_password,
            )
        if settings.controller_api_key:
            return ControllerEndpoint(settings.controller_base_url, "api-key", settings.controller_api_key)
        return None
