"""Dependency container for collaborator adapters."""

from access_bridge.container.service_container import ServiceContainer

__all__ = ["ServiceContainer"]
