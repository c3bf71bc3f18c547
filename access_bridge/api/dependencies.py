"""
================================================================================
FILE: access_bridge/api/dependencies.py
================================================================================

PURPOSE:
    FastAPI dependencies injected into route handlers via Depends().
    Everything is read from app.state, which create_app() populates, so a
    test can build an app around its own bridge without module globals.

DEPENDENCY TREE:
    get_settings
    get_bridge
    get_log_buffer
    require_api_key ─ depends on get_settings

KEY FACTS:
    - A missing component means startup failed → 503, never a 500
    - API key comparison is constant-time
"""

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from access_bridge.config import constants
from access_bridge.config.settings import Settings
from access_bridge.core.log_buffer import LogBuffer
from access_bridge.services.bridge_service import BridgeService
from access_bridge.utils import generate_request_id

logger = logging.getLogger(__name__)

#================================================================================
#DEPENDENCY FUNCTIONS
#================================================================================

async def get_settings(request: Request) -> Settings:
    """
    Raises:
        HTTPException: 503 if settings were never attached (startup failed)
    """
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        logger.error("Settings not available on app state")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service initialization failed",
        )
    return settings


async def get_bridge(request: Request) -> BridgeService:
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        logger.error("Bridge service not available on app state")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bridge service not initialized",
        )
    return bridge


async def get_log_buffer(request: Request) -> Optional[LogBuffer]:
    return getattr(request.app.state, "log_buffer", None)


async def get_request_context(request: Request) -> Dict[str, Any]:
    """Correlation context for log lines."""
    return {
        "request_id": getattr(request.state, "request_id", None) or generate_request_id(),
        "client": request.client.host if request.client else None,
    }

#================================================================================
#AUTHENTICATION
#================================================================================

async def require_api_key(
    settings: Settings = Depends(get_settings),
    api_key: Optional[str] = Header(default=None, alias=constants.API_KEY_HEADER),
) -> None:
    """
    Guard for management routes.

    No API_KEY configured → open access (local deployments).
    Otherwise the X-API-Key header must match exactly.
    """
    if not settings.api_key:
        return
    if not api_key or not hmac.compare_digest(api_key.encode("utf-8"), settings.api_key.encode("utf-8")):
        logger.warning("Rejected management request: invalid or missing API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
