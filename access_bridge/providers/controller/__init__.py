from access_bridge.providers.controller.base import ControllerAdapter, ControllerEndpoint

__all__ = ["ControllerAdapter", "ControllerEndpoint"]
