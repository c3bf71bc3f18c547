# access_bridge/__init__.py

"""
Door-access bridge package.

This package contains:
- api: FastAPI webhook + management routes
- config: settings and constants
- core: resilience primitives (retry, circuit breaker, health monitor) and logging
- services: mapping store, event translator, bridge orchestrator
- providers: controller/cloud adapter interfaces and implementations
- container: provider discovery and lifecycle
"""

__all__ = ["__version__"]

__version__ = "1.0.0"
