"""Tests for core/retry.py: backoff delays, retry loop and predicates."""

import httpx
import pytest

from access_bridge.core.exceptions import CircuitBreakerOpenError, ControllerError, ValidationError
from access_bridge.core.retry import (
    RetryConditions,
    RetryOptions,
    calculate_backoff_delay,
    create_retry_wrapper,
    retry_async,
    retry_with_backoff,
)


def fast_options(**overrides):
    values = dict(max_attempts=3, initial_delay=0.001, max_delay=0.005, jitter=0.0)
    values.update(overrides)
    return RetryOptions(**values)


class Flaky:
    """Fails `failures` times, then returns `result`."""

    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or ControllerError("boom", status_code=503)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


# ============================================================================
# DELAYS
# ============================================================================


def test_backoff_grows_exponentially_without_jitter():
    options = RetryOptions(initial_delay=1.0, backoff_multiplier=2.0, max_delay=100.0, jitter=0.0)
    assert calculate_backoff_delay(1, options) == 1.0
    assert calculate_backoff_delay(2, options) == 2.0
    assert calculate_backoff_delay(3, options) == 4.0


def test_backoff_is_capped_at_max_delay():
    options = RetryOptions(initial_delay=1.0, backoff_multiplier=10.0, max_delay=5.0, jitter=0.0)
    assert calculate_backoff_delay(4, options) == 5.0


def test_jitter_stays_within_ratio():
    options = RetryOptions(initial_delay=1.0, backoff_multiplier=2.0, max_delay=10.0, jitter=0.25)
    for _ in range(50):
        delay = calculate_backoff_delay(1, options)
        assert 0.75 <= delay <= 1.25


# ============================================================================
# RETRY LOOP
# ============================================================================


async def test_returns_first_success():
    fn = Flaky(failures=0)
    assert await retry_with_backoff(fn, fast_options()) == "ok"
    assert fn.calls == 1


async def test_recovers_after_transient_failures():
    fn = Flaky(failures=2)
    assert await retry_with_backoff(fn, fast_options(max_attempts=3)) == "ok"
    assert fn.calls == 3


async def test_never_exceeds_max_attempts_and_raises_last_error():
    fn = Flaky(failures=10)
    with pytest.raises(ControllerError):
        await retry_with_backoff(fn, fast_options(max_attempts=4))
    assert fn.calls == 4


async def test_max_attempts_one_means_single_call():
    fn = Flaky(failures=1)
    with pytest.raises(ControllerError):
        await retry_with_backoff(fn, fast_options(max_attempts=1))
    assert fn.calls == 1


async def test_should_retry_false_stops_immediately():
    fn = Flaky(failures=5, error=ValidationError("bad input"))
    options = fast_options(should_retry=lambda e: not isinstance(e, ValidationError))
    with pytest.raises(ValidationError):
        await retry_with_backoff(fn, options)
    assert fn.calls == 1


async def test_on_retry_receives_attempt_error_and_delay():
    seen = []
    fn = Flaky(failures=2)
    options = fast_options(on_retry=lambda attempt, error, delay: seen.append((attempt, type(error), delay)))
    await retry_with_backoff(fn, options)
    assert [s[0] for s in seen] == [1, 2]
    assert all(s[1] is ControllerError for s in seen)
    assert all(s[2] >= 0 for s in seen)


async def test_circuit_open_is_not_retried_by_bridge_predicate():
    fn = Flaky(failures=5, error=CircuitBreakerOpenError("open", breaker_name="controller"))
    options = fast_options(should_retry=RetryConditions.not_circuit_open)
    with pytest.raises(CircuitBreakerOpenError):
        await retry_with_backoff(fn, options)
    assert fn.calls == 1


async def test_create_retry_wrapper_passes_arguments():
    calls = []

    async def add(a, b):
        calls.append((a, b))
        if len(calls) < 2:
            raise ConnectionError("reset")
        return a + b

    wrapped = create_retry_wrapper(add, fast_options())
    assert await wrapped(2, 3) == 5
    assert calls == [(2, 3), (2, 3)]


async def test_retry_async_decorator_filters_exception_types():
    attempts = {"n": 0}

    @retry_async(max_attempts=3, delay_seconds=0.001, exceptions=(ConnectionError,))
    async def fails_with_value_error():
        attempts["n"] += 1
        raise ValueError("not retryable")

    with pytest.raises(ValueError):
        await fails_with_value_error()
    assert attempts["n"] == 1


def test_from_settings_respects_retry_enabled(settings):
    assert RetryOptions.from_settings(settings).max_attempts == settings.retry_max_attempts
    disabled = settings.model_copy(update={"retry_enabled": False})
    assert RetryOptions.from_settings(disabled).max_attempts == 1


# ============================================================================
# PREDICATES
# ============================================================================


def _http_error(status_code):
    request = httpx.Request("POST", "https://cloud.example/events")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


def test_network_errors():
    assert RetryConditions.network_errors(ConnectionError())
    assert RetryConditions.network_errors(TimeoutError())
    assert RetryConditions.network_errors(httpx.ConnectError("refused"))
    assert not RetryConditions.network_errors(ValueError())


def test_server_and_rate_limit_errors():
    assert RetryConditions.server_errors(_http_error(503))
    assert RetryConditions.server_errors(ControllerError("x", status_code=500))
    assert not RetryConditions.server_errors(_http_error(404))
    assert RetryConditions.rate_limit_errors(_http_error(429))
    assert not RetryConditions.rate_limit_errors(_http_error(500))


def test_transient_errors_combines_predicates():
    assert RetryConditions.transient_errors(ConnectionError())
    assert RetryConditions.transient_errors(_http_error(502))
    assert RetryConditions.transient_errors(_http_error(429))
    assert not RetryConditions.transient_errors(_http_error(400))
