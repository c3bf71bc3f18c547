"""Configuration package: typed settings and application constants."""

from access_bridge.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
