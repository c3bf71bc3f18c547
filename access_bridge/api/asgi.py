"""
================================================================================
FILE: access_bridge/api/asgi.py
================================================================================

PURPOSE:
    ASGI entry point for production servers. Builds the app from the
    environment so a server can import it by path:

        uvicorn access_bridge.api.asgi:app --host 127.0.0.1 --port 9090

KEY FACTS:
    - Settings are read from .env / environment at import
    - Never modify app behavior in this file; use main.py for app setup
"""

from access_bridge.api.main import create_app

# ASGI servers look for 'app' by default
app = create_app()

__all__ = ["app"]
