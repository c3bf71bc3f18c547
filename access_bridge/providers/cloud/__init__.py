from access_bridge.providers.cloud.base import CloudAdapter

__all__ = ["CloudAdapter"]
