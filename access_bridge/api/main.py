"""
================================================================================
FILE: access_bridge/api/main.py
================================================================================

PURPOSE:
    FastAPI application factory. Creates and configures the app, wires the
    bridge service into app.state, maps BridgeException subclasses onto HTTP
    responses and runs the bridge lifecycle inside the app lifespan.

WORKFLOW:
    1. Load settings (from .env / environment) unless passed in
    2. Configure logging (console, ring buffer, optional rotating file)
    3. Initialize FastAPI app instance + CORS + request-id middleware
    4. Lifespan startup: bridge.initialize(settings) → bridge.start()
    5. Register routes from api/routes.py
    6. Lifespan shutdown: bridge.shutdown()

STARTUP SEQUENCE:
    1. initialize() failure → startup aborts (configuration is broken)
    2. start() failure → logged, app keeps serving so /api/status and
       /api/health/components can report the ERROR state

ERROR MAPPING:
    ValidationError          → 400
    WebhookSignatureError    → 401
    MappingNotFoundError     → 404
    DuplicateMappingError    → 409
    ServiceStateError        → 503
    CircuitBreakerOpenError  → 503
    DependencyError          → 502
    other BridgeException    → 500

KEY FACTS:
    - No module globals: everything lives on app.state
    - manage_lifecycle=False lets tests drive an already-initialized bridge
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from access_bridge import __version__
from access_bridge.api import routes
from access_bridge.config import constants
from access_bridge.config.settings import Settings, load_settings
from access_bridge.core.exceptions import (
    BridgeException,
    CircuitBreakerOpenError,
    DependencyError,
    DuplicateMappingError,
    MappingNotFoundError,
    ServiceStateError,
    ValidationError,
    WebhookSignatureError,
)
from access_bridge.core.log_buffer import LogBuffer, setup_logging
from access_bridge.services.bridge_service import BridgeService
from access_bridge.utils import generate_request_id

logger = logging.getLogger(__name__)

# Most specific first.
_STATUS_BY_EXCEPTION = (
    (WebhookSignatureError, 401),
    (MappingNotFoundError, 404),
    (DuplicateMappingError, 409),
    (ValidationError, 400),
    (ServiceStateError, 503),
    (CircuitBreakerOpenError, 503),
    (DependencyError, 502),
)


def status_for_exception(exc: BridgeException) -> int:
    for exc_type, status_code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return 500


def create_app(
    settings: Optional[Settings] = None,
    bridge: Optional[BridgeService] = None,
    log_buffer: Optional[LogBuffer] = None,
    manage_lifecycle: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (loaded from the environment when omitted)
        bridge: Pre-built bridge service (a new one is created when omitted)
        log_buffer: Buffer backing /api/service/logs (logging is configured
                    and a new buffer created when omitted)
        manage_lifecycle: Initialize/start the bridge on startup and shut it
                          down on shutdown

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or load_settings()
    if log_buffer is None:
        log_buffer = setup_logging(settings)
    bridge = bridge or BridgeService()

    # =========================================================================
    # LIFESPAN
    # =========================================================================
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_monotonic = time.monotonic()

        if manage_lifecycle:
            logger.info("=" * 80)
            logger.info("APPLICATION STARTUP")
            logger.info("=" * 80)

            await bridge.initialize(settings)
            try:
                await bridge.start()
            except Exception as e:
                logger.error(f"Bridge failed to start, serving in degraded mode: {str(e)}")

            logger.info("=" * 80)
            logger.info(f"APPLICATION STARTUP COMPLETE (state={bridge.get_state().value})")
            logger.info("=" * 80)

        try:
            yield
        finally:
            if manage_lifecycle:
                logger.info("=" * 80)
                logger.info("APPLICATION SHUTDOWN")
                logger.info("=" * 80)
                try:
                    await bridge.shutdown()
                except Exception as e:
                    logger.error(f"SHUTDOWN ERROR: {str(e)}", exc_info=True)

    app = FastAPI(
        title=constants.API_TITLE,
        description=constants.API_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.bridge = bridge
    app.state.log_buffer = log_buffer
    app.state.started_monotonic = time.monotonic()

    # CORS middleware configuration.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # EXCEPTION HANDLERS
    # =========================================================================
    @app.exception_handler(BridgeException)
    async def bridge_exception_handler(request: Request, exc: BridgeException):
        """Map bridge exceptions onto status codes with a structured body."""
        request_id = getattr(request.state, "request_id", "unknown")
        status_code = status_for_exception(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"{exc.__class__.__name__} [request_id={request_id}]: {exc.message}",
            extra={"error_code": exc.error_code},
        )
        body = exc.to_dict()
        body["request_id"] = request_id
        return JSONResponse(status_code=status_code, content=body)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"Unexpected error [request_id={request_id}]: {str(exc)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred",
                "request_id": request_id,
            },
        )

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================
    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next):
        """Add unique request ID for correlation tracking."""
        request.state.request_id = request.headers.get("X-Request-ID") or generate_request_id()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response

    # =========================================================================
    # ROUTES
    # =========================================================================
    app.include_router(routes.router)
    app.include_router(routes.management_router)
    app.include_router(routes.webhook_router)

    return app


def main() -> None:
    """Console entry point: run the bridge API under uvicorn."""
    import uvicorn

    settings = load_settings()
    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.server_host,
        port=settings.server_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
