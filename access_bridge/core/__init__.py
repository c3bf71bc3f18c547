"""
Core layer: resilience primitives and cross-cutting concerns.

    exceptions        - error hierarchy
    retry             - bounded exponential backoff
    circuit_breaker   - three-state breaker per dependency
    health_monitor    - periodic per-component probes
    webhook_verifier  - HMAC-SHA256 webhook authentication
    notifier          - ordered listener registry for typed messages
    log_sanitizer     - credential redaction
    log_buffer        - logging setup + in-memory log buffer
"""

from access_bridge.core.circuit_breaker import CircuitBreaker, CircuitState
from access_bridge.core.health_monitor import HealthMonitor, HealthStatus
from access_bridge.core.retry import RetryConditions, RetryOptions, retry_with_backoff
from access_bridge.core.webhook_verifier import WebhookVerifier, verify_signature

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "HealthMonitor",
    "HealthStatus",
    "RetryConditions",
    "RetryOptions",
    "retry_with_backoff",
    "WebhookVerifier",
    "verify_signature",
]
