"""
================================================================================
FILE: access_bridge/core/health_monitor.py
================================================================================

PURPOSE:
    Periodic liveness classification per named component, independent of the
    call-path circuit breakers. A breaker answers "may we call it right now";
    the monitor answers "is it reachable".

WORKFLOW:
    1. register_component(name, probe) with an async probe → HealthCheckResult
    2. start(): run one round immediately, then every check_interval seconds
    3. Each round runs all probes concurrently, each raced against `timeout`
    4. Classify:
         HEALTHY    → consecutive_failures = 0, status HEALTHY
         DEGRADED   → status DEGRADED, counter untouched
         UNHEALTHY / timeout / exception → counter += 1;
                      counter >= failure_threshold ? UNHEALTHY : DEGRADED
    5. Emit StatusChange only when the status actually changes

KEY FACTS:
    - Probe errors never escape the monitor loop
    - Overall health is computed on demand (worst component wins)
    - No components registered → HEALTHY
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from access_bridge.config import constants
from access_bridge.core.exceptions import HealthCheckTimeoutError
from access_bridge.core.notifier import Notifier

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    status: HealthStatus
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    last_check: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    consecutive_failures: int = 0
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "name": self.name,
            "status": self.status.value,
            "last_check": iso(self.last_check),
            "last_success": iso(self.last_success),
            "last_failure": iso(self.last_failure),
            "consecutive_failures": self.consecutive_failures,
            "message": self.message,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class StatusChange:
    component: str
    previous_status: HealthStatus
    current_status: HealthStatus
    health: ComponentHealth


HealthProbe = Callable[[], Awaitable[HealthCheckResult]]


class HealthMonitor:
    """Runs registered probes on an interval and tracks per-component status."""

    def __init__(
        self,
        check_interval: float = constants.HEALTH_CHECK_INTERVAL_SECONDS,
        failure_threshold: int = constants.HEALTH_FAILURE_THRESHOLD,
        timeout: float = constants.HEALTH_CHECK_TIMEOUT_SECONDS,
    ):
        self._check_interval = check_interval
        self._failure_threshold = failure_threshold
        self._timeout = timeout

        self._probes: Dict[str, HealthProbe] = {}
        self._health: Dict[str, ComponentHealth] = {}
        self._task: Optional[asyncio.Task] = None

        self.notifier: Notifier[StatusChange] = Notifier("HealthMonitor")

        logger.info(
            f"HealthMonitor initialized: interval={check_interval}s, "
            f"failure_threshold={failure_threshold}, timeout={timeout}s"
        )

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_component(self, name: str, probe: HealthProbe) -> None:
        self._probes[name] = probe
        self._health[name] = ComponentHealth(name=name)
        logger.info(f"Health check registered: {name}")

    def unregister_component(self, name: str) -> None:
        self._probes.pop(name, None)
        self._health.pop(name, None)
        logger.info(f"Health check unregistered: {name}")

    def subscribe(self, callback: Callable[[StatusChange], Any]) -> Callable[[], None]:
        return self.notifier.subscribe(callback)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start(self) -> None:
        if self.is_active():
            logger.warning("HealthMonitor already running")
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="health-monitor"
        )
        logger.info(f"✓ HealthMonitor started ({len(self._probes)} components)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("HealthMonitor stopped")

    async def shutdown(self) -> None:
        await self.stop()
        self.notifier.clear()
        self._probes.clear()
        self._health.clear()

    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await self.run_checks()
            await asyncio.sleep(self._check_interval)

    # ========================================================================
    # CHECKS
    # ========================================================================

    async def run_checks(self) -> None:
        """Run one round of every registered probe concurrently."""
        names = list(self._probes)
        if not names:
            return
        await asyncio.gather(*(self._check_component(name) for name in names))

    async def _check_component(self, name: str) -> None:
        probe = self._probes.get(name)
        if probe is None:
            return

        try:
            result = await asyncio.wait_for(probe(), timeout=self._timeout)
        except asyncio.TimeoutError:
            error = HealthCheckTimeoutError(context={"component": name})
            result = HealthCheckResult(HealthStatus.UNHEALTHY, message=error.message)
        except Exception as e:
            result = HealthCheckResult(
                HealthStatus.UNHEALTHY,
                message=str(e),
                details={"error": type(e).__name__},
            )

        self._apply_result(name, result)

    def _apply_result(self, name: str, result: HealthCheckResult) -> None:
        current = self._health.get(name)
        if current is None:
            # unregistered while the probe was running
            return

        now = datetime.now(timezone.utc)
        previous_status = current.status
        current.last_check = now
        current.message = result.message
        current.details = dict(result.details)

        if result.status == HealthStatus.HEALTHY:
            current.consecutive_failures = 0
            current.last_success = now
            current.status = HealthStatus.HEALTHY
        elif result.status == HealthStatus.DEGRADED:
            current.status = HealthStatus.DEGRADED
        else:
            current.consecutive_failures += 1
            current.last_failure = now
            if current.consecutive_failures >= self._failure_threshold:
                current.status = HealthStatus.UNHEALTHY
            else:
                current.status = HealthStatus.DEGRADED

        if current.status != previous_status:
            logger.warning(
                f"Health status changed: {name} {previous_status.value} → {current.status.value}"
                + (f" ({current.message})" if current.message else "")
            )
            self.notifier.emit(
                StatusChange(
                    component=name,
                    previous_status=previous_status,
                    current_status=current.status,
                    health=replace(current, details=dict(current.details)),
                )
            )

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_component_health(self, name: str) -> Optional[ComponentHealth]:
        health = self._health.get(name)
        return replace(health, details=dict(health.details)) if health else None

    def get_all_health(self) -> List[ComponentHealth]:
        return [replace(h, details=dict(h.details)) for h in self._health.values()]

    def get_overall_health(self) -> HealthStatus:
        statuses = [h.status for h in self._health.values()]
        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY
        if HealthStatus.DEGRADED in statuses:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY
