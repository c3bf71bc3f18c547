"""
================================================================================
FILE: access_bridge/core/retry.py
================================================================================

PURPOSE:
    Bounded exponential-backoff retries for a single async operation, with a
    pluggable retry predicate. Used by the bridge around controller unlocks
    (outside the circuit breaker) and available as a decorator.

WORKFLOW:
    1. Call the operation
    2. On failure: ask should_retry(error); stop if it says no or attempts are used up
    3. Sleep min(initial * multiplier^(attempt-1), max) +/- 25% jitter
    4. Call on_retry(attempt, error, delay_seconds) before each sleep
    5. Re-raise the last error when giving up

KEY FACTS:
    - Stateless: each call is independent
    - Default predicate retries everything
    - Jitter spreads out retries from many doors failing together
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from access_bridge.config import constants
from access_bridge.core.exceptions import CircuitBreakerOpenError, DependencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryOptions:
    """Retry policy for one call site."""

    max_attempts: int = constants.RETRY_MAX_ATTEMPTS
    initial_delay: float = constants.RETRY_INITIAL_DELAY_SECONDS
    max_delay: float = constants.RETRY_MAX_DELAY_SECONDS
    backoff_multiplier: float = constants.RETRY_BACKOFF_MULTIPLIER
    jitter: float = constants.RETRY_JITTER_RATIO
    should_retry: Optional[Callable[[BaseException], bool]] = None
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "RetryOptions":
        values = {
            "max_attempts": settings.retry_max_attempts if settings.retry_enabled else 1,
            "initial_delay": settings.retry_initial_delay,
            "max_delay": settings.retry_max_delay,
            "backoff_multiplier": settings.retry_backoff_multiplier,
        }
        values.update(overrides)
        return cls(**values)


def calculate_backoff_delay(attempt: int, options: RetryOptions) -> float:
    """
    Delay (seconds) to wait after the given failed attempt.

    Args:
        attempt: 1-based number of the attempt that just failed
        options: Retry policy

    Examples:
        attempt=1, initial=1.0, multiplier=2 -> ~1.0s (0.75 .. 1.25)
        attempt=3, initial=1.0, multiplier=2 -> ~4.0s
    """
    base = min(
        options.initial_delay * (options.backoff_multiplier ** (attempt - 1)),
        options.max_delay,
    )
    if options.jitter:
        base += base * options.jitter * random.uniform(-1.0, 1.0)
    return max(0.0, base)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
) -> T:
    """
    Run fn with retries.

    Args:
        fn: Zero-argument coroutine function
        options: Retry policy (defaults to RetryOptions())

    Returns:
        Result of the first successful call

    Raises:
        The last exception raised by fn
    """
    options = options or RetryOptions()
    max_attempts = max(1, options.max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt >= max_attempts:
                if max_attempts > 1:
                    logger.error(f"Giving up after {attempt} attempts: {str(e)}")
                raise
            if options.should_retry is not None and not options.should_retry(e):
                logger.debug(f"Not retrying {type(e).__name__}: {str(e)}")
                raise

            delay = calculate_backoff_delay(attempt, options)
            if options.on_retry is not None:
                options.on_retry(attempt, e, delay)
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed. "
                f"Retrying in {delay:.2f}s... Error: {str(e)}"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover


def create_retry_wrapper(
    fn: Callable[..., Awaitable[T]],
    options: Optional[RetryOptions] = None,
) -> Callable[..., Awaitable[T]]:
    """Bind a retry policy to an async function."""

    @wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        return await retry_with_backoff(lambda: fn(*args, **kwargs), options)

    return wrapper


def retry_async(
    max_attempts: int = constants.RETRY_MAX_ATTEMPTS,
    delay_seconds: float = constants.RETRY_INITIAL_DELAY_SECONDS,
    backoff_multiplier: float = constants.RETRY_BACKOFF_MULTIPLIER,
    max_delay: float = constants.RETRY_MAX_DELAY_SECONDS,
    exceptions: tuple = (Exception,),
):
    """
    Decorator form of retry_with_backoff.

    Examples:
        @retry_async(max_attempts=5, exceptions=(ControllerError,))
        async def discover():
            ...
    """
    options = RetryOptions(
        max_attempts=max_attempts,
        initial_delay=delay_seconds,
        max_delay=max_delay,
        backoff_multiplier=backoff_multiplier,
        should_retry=lambda e: isinstance(e, exceptions),
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        return create_retry_wrapper(func, options)

    return decorator

# ================================================================================
# RETRY PREDICATES
# ================================================================================

def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, DependencyError):
        return error.status_code
    return None


class RetryConditions:
    """Common should_retry predicates."""

    @staticmethod
    def network_errors(error: BaseException) -> bool:
        return isinstance(
            error, (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)
        )

    @staticmethod
    def server_errors(error: BaseException) -> bool:
        status = _status_code(error)
        return status is not None and 500 <= status < 600

    @staticmethod
    def rate_limit_errors(error: BaseException) -> bool:
        return _status_code(error) == 429

    @staticmethod
    def transient_errors(error: BaseException) -> bool:
        return (
            RetryConditions.network_errors(error)
            or RetryConditions.server_errors(error)
            or RetryConditions.rate_limit_errors(error)
        )

    @staticmethod
    def not_circuit_open(error: BaseException) -> bool:
        """Retry anything except a breaker rejection."""
        return not isinstance(error, CircuitBreakerOpenError)
