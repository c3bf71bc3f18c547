# MERGED: 3 sections with separation comments
#│   │   ├── SECTION 1: Base exceptions
#│   │   ├── SECTION 2: Dependency exceptions (recoverable)
#│   │   └── SECTION 3: Configuration, validation & webhook exceptions (fatal)
"""
================================================================================
FILE: access_bridge/core/exceptions.py
================================================================================

PURPOSE:
    Exception hierarchy for the whole bridge. Every error raised by the
    resilience layer, the services and the API shares one root so callers can
    decide between retrying, failing fast and mapping onto an HTTP status.

WORKFLOW:
    1. Base exception class (BridgeException) carries message/error_code/context
    2. Two categories:
       - RecoverableException: transient, eligible for retry + circuit breaking
       - FatalException: permanent, never retried
    3. Specific types per concern (controller, cloud, mappings, webhook, config)

IMPORTS:
    - None (only Python builtins)

KEY FACTS:
    - NO imports from access_bridge modules (prevents circular dependencies)
    - Each exception has an error_code for categorization
    - to_dict() output is the structured error body returned by the API

EXCEPTION CATEGORIES:
    - RECOVERABLE (transient):
        * DependencyError / ControllerError / CloudError: remote call failed
        * CircuitBreakerOpenError: breaker rejected the call (retry later)
        * HealthCheckTimeoutError: probe exceeded its timeout

    - FATAL (fail fast):
        * ConfigurationError: missing/invalid settings
        * ServiceInitializationError: provider/container failed to come up
        * ServiceStateError: operation not allowed in the current state
        * ValidationError (+ DuplicateMappingError, MappingNotFoundError)
        * WebhookSignatureError: inbound webhook failed authentication
"""

# ================================================================================
# IMPORTS
# ================================================================================

from typing import Optional, Dict, Any

# ================================================================================
# SECTION 1: BASE EXCEPTIONS
# ================================================================================

class BridgeException(Exception):
    """
    Root exception for all bridge errors.

    Attributes:
        message (str): Human-readable error message
        error_code (str): Machine-readable error code for categorization
        context (dict): Additional context (optional)
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dict for JSON response"""
        return {
            "error": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context
        }


class RecoverableException(BridgeException):
    """
    Transient failure (timeouts, connection resets, 5xx).

    Retry wrappers and circuit breakers treat these as "try again later".
    """
    pass


class FatalException(BridgeException):
    """
    Permanent failure (bad config, bad input, bad signature).

    Never retried.
    """
    pass

# ================================================================================
# SECTION 2: DEPENDENCY EXCEPTIONS
# ================================================================================

class DependencyError(RecoverableException):
    """A remote dependency call failed (can retry)"""

    def __init__(
        self,
        message: str,
        context: Optional[Dict] = None,
        error_code: str = "DEPENDENCY_ERROR",
        status_code: Optional[int] = None,
    ):
        super().__init__(message, error_code=error_code, context=context)
        self.status_code = status_code


class ControllerError(DependencyError):
    """Door controller call failed (can retry)"""

    def __init__(self, message: str, context: Optional[Dict] = None, status_code: Optional[int] = None):
        super().__init__(message, context=context, error_code="CONTROLLER_ERROR", status_code=status_code)


class CloudError(DependencyError):
    """Cloud service call failed (can retry)"""

    def __init__(self, message: str, context: Optional[Dict] = None, status_code: Optional[int] = None):
        super().__init__(message, context=context, error_code="CLOUD_ERROR", status_code=status_code)


class CircuitBreakerOpenError(RecoverableException):
    """Circuit breaker is open (fail fast, retry later)"""

    def __init__(self, message: str, breaker_name: str = "", context: Optional[Dict] = None):
        super().__init__(message, error_code="CIRCUIT_BREAKER_OPEN", context=context)
        self.breaker_name = breaker_name


class HealthCheckTimeoutError(RecoverableException):
    """Health probe exceeded its timeout"""

    def __init__(self, message: str = "timeout", context: Optional[Dict] = None):
        super().__init__(message, error_code="HEALTH_CHECK_TIMEOUT", context=context)

# ================================================================================
# SECTION 3: CONFIGURATION, VALIDATION & WEBHOOK EXCEPTIONS
# ================================================================================

class ConfigurationError(FatalException):
    """Invalid configuration (fatal)"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="CONFIG_ERROR", context=context)


class ServiceInitializationError(FatalException):
    """Raised when a service/provider fails to initialize (fatal)."""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="SERVICE_INIT_ERROR", context=context)


class ServiceStateError(FatalException):
    """Operation is not allowed in the service's current state."""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="SERVICE_STATE_ERROR", context=context)


class ValidationError(FatalException):
    """Input validation failed (won't fix on retry)"""

    def __init__(self, message: str, context: Optional[Dict] = None, error_code: str = "VALIDATION_ERROR"):
        super().__init__(message, error_code=error_code, context=context)


class DuplicateMappingError(ValidationError):
    """A mapping already uses this cloud lock id or controller door id"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, context=context, error_code="DUPLICATE_MAPPING")


class MappingNotFoundError(ValidationError):
    """No mapping exists for the requested identifier"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, context=context, error_code="MAPPING_NOT_FOUND")


class WebhookSignatureError(FatalException):
    """Inbound webhook failed signature verification"""

    def __init__(self, message: str = "Invalid webhook signature", context: Optional[Dict] = None):
        super().__init__(message, error_code="INVALID_SIGNATURE", context=context)
