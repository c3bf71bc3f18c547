# Resilience pattern
"""
================================================================================
FILE: access_bridge/core/circuit_breaker.py
================================================================================

PURPOSE:
    Circuit breaker guarding one remote dependency (e.g. every controller
    unlock call). Stops hammering a failing dependency and lets it recover.

STATE TRANSITIONS:
    CLOSED → OPEN:       failures reach failure_threshold
    OPEN → HALF_OPEN:    timer fires `timeout` seconds after opening
    HALF_OPEN → CLOSED:  success_threshold consecutive successes
    HALF_OPEN → OPEN:    any failure (new timer scheduled)

WORKFLOW:
    1. execute(fn, *args) counts the request
    2. OPEN → raise CircuitBreakerOpenError without calling fn
    3. Otherwise await fn; record success/failure; re-raise failures
    4. Emit CircuitStateChange to listeners on every transition

KEY FACTS:
    - Half-open is entered by a scheduled timer (loop.call_later), not lazily
    - Error types are not inspected: any exception is a failure
    - Rejected calls still count toward total_requests
    - No per-call timeout here (comes from the wrapped call or retry layer)
    - One instance per dependency (isolated failure tracking)
"""

# ================================================================================
# IMPORTS
# ================================================================================

import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from access_bridge.config import constants
from access_bridge.core.exceptions import CircuitBreakerOpenError
from access_bridge.core.notifier import Notifier

logger = logging.getLogger(__name__)

# ================================================================================
# TYPES
# ================================================================================

class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerStats:
    """Point-in-time copy of a breaker's counters."""

    name: str
    state: CircuitState
    failures: int
    successes: int
    total_requests: int
    opened_at: Optional[float]
    last_failure: Optional[float]
    last_success: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass(frozen=True)
class CircuitStateChange:
    name: str
    previous: CircuitState
    current: CircuitState
    failures: int
    timestamp: float

# ================================================================================
# CIRCUIT BREAKER CLASS
# ================================================================================

class CircuitBreaker:
    """
    Three-state circuit breaker.

    Fails fast while OPEN; probes recovery in HALF_OPEN after the timeout.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = constants.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        success_threshold: int = constants.CIRCUIT_BREAKER_SUCCESS_THRESHOLD,
        timeout: float = constants.CIRCUIT_BREAKER_TIMEOUT_SECONDS,
        enabled: bool = True,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Dependency guarded by this breaker (for logs and stats)
            failure_threshold: Failures before opening (default: 5)
            success_threshold: Half-open successes before closing (default: 2)
            timeout: Seconds to stay OPEN before HALF_OPEN (default: 60)
            enabled: False turns execute() into a pass-through
        """
        self.name = name
        self._failure_threshold = failure_threshold
        self._success_threshold = success_threshold
        self._timeout = timeout
        self._enabled = enabled

        # State tracking
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._total_requests = 0
        self._opened_at: Optional[float] = None
        self._last_failure: Optional[float] = None
        self._last_success: Optional[float] = None
        self._half_open_timer: Optional[asyncio.TimerHandle] = None

        self.notifier: Notifier[CircuitStateChange] = Notifier(f"CircuitBreaker[{name}]")

        logger.info(
            f"CircuitBreaker[{name}] initialized: failure_threshold={failure_threshold}, "
            f"success_threshold={success_threshold}, timeout={timeout}s"
        )

    async def execute(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Execute function with circuit breaker protection.

        Args:
            fn: Async function to execute
            *args: Function arguments
            **kwargs: Function keyword arguments

        Returns:
            Function result

        Raises:
            CircuitBreakerOpenError: If circuit is OPEN (fn is not called)
        """
        self._total_requests += 1

        if not self._enabled:
            return await fn(*args, **kwargs)

        if self._state == CircuitState.OPEN:
            open_for = time.time() - (self._opened_at or time.time())
            logger.warning(f"CircuitBreaker[{self.name}] OPEN: fail fast ({open_for:.1f}s open)")
            raise CircuitBreakerOpenError(
                f"Circuit breaker '{self.name}' is open",
                breaker_name=self.name,
                context={"open_for_seconds": round(open_for, 3)},
            )

        try:
            result = await fn(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise

        self._on_success()
        return result

    # ========================================================================
    # OUTCOME HANDLING
    # ========================================================================

    def _on_success(self) -> None:
        self._last_success = time.time()

        if self._state == CircuitState.HALF_OPEN:
            self._successes += 1
            logger.info(
                f"CircuitBreaker[{self.name}] half-open success "
                f"{self._successes}/{self._success_threshold}"
            )
            if self._successes >= self._success_threshold:
                self._close()
        else:
            self._failures = 0

    def _on_failure(self, error: Exception) -> None:
        self._last_failure = time.time()
        self._failures += 1

        logger.error(
            f"CircuitBreaker[{self.name}]: failure {self._failures}/{self._failure_threshold}: {str(error)}"
        )

        if self._state == CircuitState.HALF_OPEN:
            self._open()
        elif self._state == CircuitState.CLOSED and self._failures >= self._failure_threshold:
            self._open()

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def _transition(self, new_state: CircuitState) -> None:
        previous = self._state
        self._state = new_state
        self.notifier.emit(
            CircuitStateChange(
                name=self.name,
                previous=previous,
                current=new_state,
                failures=self._failures,
                timestamp=time.time(),
            )
        )

    def _open(self) -> None:
        self._cancel_timer()
        self._opened_at = time.time()
        self._successes = 0
        logger.error(
            f"CircuitBreaker[{self.name}] transitioned {self._state.value} → OPEN "
            f"after {self._failures} failures (retry in {self._timeout}s)"
        )
        self._transition(CircuitState.OPEN)
        loop = asyncio.get_running_loop()
        self._half_open_timer = loop.call_later(self._timeout, self._half_open)

    def _half_open(self) -> None:
        self._half_open_timer = None
        if self._state != CircuitState.OPEN:
            return
        self._failures = 0
        self._successes = 0
        logger.info(f"CircuitBreaker[{self.name}] transitioned OPEN → HALF_OPEN (testing recovery)")
        self._transition(CircuitState.HALF_OPEN)

    def _close(self) -> None:
        self._cancel_timer()
        self._failures = 0
        self._successes = 0
        self._opened_at = None
        logger.info(f"CircuitBreaker[{self.name}] transitioned {self._state.value} → CLOSED (recovered)")
        self._transition(CircuitState.CLOSED)

    def _cancel_timer(self) -> None:
        if self._half_open_timer is not None:
            self._half_open_timer.cancel()
            self._half_open_timer = None

    # ========================================================================
    # PUBLIC HELPERS
    # ========================================================================

    def subscribe(self, callback: Callable[[CircuitStateChange], Any]) -> Callable[[], None]:
        return self.notifier.subscribe(callback)

    def get_state(self) -> CircuitState:
        """Get current circuit breaker state"""
        return self._state

    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def get_stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            name=self.name,
            state=self._state,
            failures=self._failures,
            successes=self._successes,
            total_requests=self._total_requests,
            opened_at=self._opened_at,
            last_failure=self._last_failure,
            last_success=self._last_success,
        )

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED"""
        old_state = self._state
        self._cancel_timer()
        self._failures = 0
        self._successes = 0
        self._opened_at = None
        if old_state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)
        logger.info(f"CircuitBreaker[{self.name}] manually reset from {old_state.value} to CLOSED")

    def shutdown(self) -> None:
        """Cancel the pending half-open timer and drop listeners."""
        self._cancel_timer()
        self.notifier.clear()
