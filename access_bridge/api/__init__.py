"""
HTTP layer: FastAPI app factory, management routes and the unlock webhook.

    from access_bridge.api import create_app
    app = create_app(settings)
"""

from access_bridge.api.main import create_app

__all__ = ["create_app"]
