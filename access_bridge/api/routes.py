# access_bridge/api/routes.py

import json
import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from access_bridge.api.dependencies import (
    get_bridge,
    get_log_buffer,
    get_request_context,
    get_settings,
    require_api_key,
)
from access_bridge.api.models import (
    ComponentHealthResponse,
    ConfigResponse,
    ErrorResponse,
    LivenessResponse,
    LogsResponse,
    MappingListResponse,
    MappingResponse,
    StatusResponse,
    WebhookResponse,
)
from access_bridge.config import constants
from access_bridge.config.settings import Settings
from access_bridge.core.exceptions import MappingNotFoundError
from access_bridge.core.log_buffer import LogBuffer
from access_bridge.services.bridge_service import BridgeService
from access_bridge.services.schemas import SyncSummary
from access_bridge.utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix=constants.API_PREFIX, tags=["status"])
management_router = APIRouter(
    prefix=constants.API_PREFIX,
    tags=["management"],
    dependencies=[Depends(require_api_key)],
)
webhook_router = APIRouter(prefix=constants.WEBHOOK_PREFIX, tags=["webhook"])

_NOT_FOUND = {404: {"model": ErrorResponse}}
_CONFLICT = {400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def _timestamp() -> str:
    return utc_now().isoformat()

# ============================================================================
# LIVENESS (no auth)
# ============================================================================

@router.get("/health", response_model=LivenessResponse, summary="Liveness probe")
async def health(request: Request) -> LivenessResponse:
    started = getattr(request.app.state, "started_monotonic", time.monotonic())
    return LivenessResponse(
        status="ok",
        timestamp=_timestamp(),
        uptime=round(time.monotonic() - started, 3),
    )

# ============================================================================
# STATUS
# ============================================================================

@management_router.get("/status", response_model=StatusResponse)
async def service_status(bridge: BridgeService = Depends(get_bridge)) -> StatusResponse:
    return StatusResponse(
        state=bridge.get_state().value,
        running=bridge.is_running,
        stats=bridge.get_stats(),
        timestamp=_timestamp(),
    )


@management_router.get("/stats")
async def service_stats(bridge: BridgeService = Depends(get_bridge)) -> Dict[str, Any]:
    return bridge.get_stats().model_dump(mode="json")


@management_router.get("/health/components", response_model=ComponentHealthResponse)
async def component_health(bridge: BridgeService = Depends(get_bridge)) -> Dict[str, Any]:
    """Health monitor view, breaker stats and event queue in one snapshot."""
    return bridge.get_health()

# ============================================================================
# DOOR MAPPINGS
# ============================================================================

@management_router.get("/mappings", response_model=MappingListResponse)
async def list_mappings(
    site_id: Optional[str] = Query(default=None, alias="siteId"),
    enabled: Optional[bool] = Query(default=None),
    bridge: BridgeService = Depends(get_bridge),
) -> MappingListResponse:
    mappings = bridge.get_door_mappings()
    if site_id is not None:
        mappings = [m for m in mappings if m.site_id == site_id]
    if enabled is not None:
        mappings = [m for m in mappings if m.enabled == enabled]
    return MappingListResponse(
        mappings=[m.to_json_dict() for m in mappings],
        count=len(mappings),
    )


@management_router.get("/mappings/{lock_id}", response_model=MappingResponse, responses=_NOT_FOUND)
async def get_mapping(lock_id: str, bridge: BridgeService = Depends(get_bridge)) -> MappingResponse:
    mapping = bridge.get_door_mapping(lock_id)
    if mapping is None:
        raise MappingNotFoundError(f"No mapping for lock {lock_id}", context={"cloudLockId": lock_id})
    return MappingResponse(mapping=mapping.to_json_dict())


@management_router.post(
    "/mappings",
    response_model=MappingResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_CONFLICT,
)
async def create_mapping(
    payload: Dict[str, Any] = Body(...),
    bridge: BridgeService = Depends(get_bridge),
) -> MappingResponse:
    """
    Create a mapping. Body uses the persisted camelCase keys:
    id, cloudLockId, controllerDoorId, siteId, name, enabled, metadata.

    400 on invalid fields, 409 on a duplicate lock id / mapping id / door id.
    """
    mapping = await bridge.add_door_mapping(payload)
    logger.info(f"Mapping created via API: {mapping.cloud_lock_id} → {mapping.controller_door_id}")
    return MappingResponse(mapping=mapping.to_json_dict())


@management_router.patch("/mappings/{lock_id}", response_model=MappingResponse, responses={**_NOT_FOUND, **_CONFLICT})
async def update_mapping(
    lock_id: str,
    payload: Dict[str, Any] = Body(...),
    bridge: BridgeService = Depends(get_bridge),
) -> MappingResponse:
    mapping = await bridge.update_door_mapping(lock_id, payload)
    return MappingResponse(mapping=mapping.to_json_dict())


@management_router.delete("/mappings/{lock_id}", response_model=MappingResponse, responses=_NOT_FOUND)
async def delete_mapping(lock_id: str, bridge: BridgeService = Depends(get_bridge)) -> MappingResponse:
    removed = await bridge.remove_door_mapping(lock_id)
    logger.info(f"Mapping removed via API: {lock_id}")
    return MappingResponse(mapping=removed.to_json_dict())


@management_router.post("/doors/sync", response_model=SyncSummary)
async def sync_doors(bridge: BridgeService = Depends(get_bridge)) -> SyncSummary:
    """Manual resync against the controller's door list."""
    return await bridge.sync_doors()

# ============================================================================
# SERVICE
# ============================================================================

@management_router.get("/service/logs", response_model=LogsResponse)
async def service_logs(
    lines: int = Query(default=100, ge=1, le=10000),
    level: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    log_buffer: Optional[LogBuffer] = Depends(get_log_buffer),
) -> LogsResponse:
    if log_buffer is None:
        return LogsResponse()
    logs = log_buffer.get_logs(level=level, search=search, limit=lines)
    return LogsResponse(logs=logs, count=len(logs), summary=log_buffer.get_summary())


@management_router.get("/config", response_model=ConfigResponse)
async def service_config(settings: Settings = Depends(get_settings)) -> ConfigResponse:
    return ConfigResponse(timestamp=_timestamp(), config=settings.public_dict())

# ============================================================================
# WEBHOOK (cloud → controller unlock)
# ============================================================================

def _webhook_error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


def _lock_id(payload: Dict[str, Any]) -> Optional[str]:
    lock = payload.get("lock")
    if isinstance(lock, dict) and lock.get("id"):
        return str(lock["id"])
    if payload.get("lockId"):
        return str(payload["lockId"])
    return None


def _user_name(payload: Dict[str, Any]) -> str:
    user = payload.get("user")
    if isinstance(user, dict) and user.get("name"):
        return str(user["name"])
    return str(payload.get("userName") or "Unknown")


@webhook_router.post("/{provider}", response_model=WebhookResponse, response_model_by_alias=True)
async def receive_webhook(
    provider: str,
    request: Request,
    settings: Settings = Depends(get_settings),
    bridge: BridgeService = Depends(get_bridge),
    request_context: Dict[str, Any] = Depends(get_request_context),
):
    """
    Inbound unlock webhook.

    WORKFLOW:
    1. Provider must match WEBHOOK_PROVIDER (else 404)
    2. Verify X-<Provider>-Signature over the exact raw body (else 401)
    3. Parse JSON; "event" is required (else 400)
    4. door.unlock / lock.unlock → resolve mapping by lock id and unlock
       - no lock id → 400, unmapped → 404, disabled → 409
       - controller failure → 500 with the error detail
    5. Any other event → 200 acknowledged, not processed
    """
    request_id = request_context["request_id"]

    if not settings.webhook_enabled or bridge.webhook_verifier is None:
        return _webhook_error(status.HTTP_404_NOT_FOUND, "Webhook endpoint disabled")
    if provider.lower() != settings.webhook_provider:
        return _webhook_error(status.HTTP_404_NOT_FOUND, f"Unknown webhook provider: {provider}")

    raw_body = await request.body()
    logger.info(f"[Webhook] Received {provider} webhook [{request_id}] ({len(raw_body)} bytes)")

    # WebhookSignatureError → 401 via the app exception handler
    bridge.webhook_verifier.verify(raw_body, request.headers.get(settings.webhook_signature_header))

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.error(f"[Webhook] Invalid JSON body [{request_id}]")
        return _webhook_error(status.HTTP_400_BAD_REQUEST, "Invalid webhook payload")

    if not isinstance(payload, dict) or not isinstance(payload.get("event"), str) or not payload["event"]:
        logger.error(f"[Webhook] Invalid webhook payload - missing event [{request_id}]")
        return _webhook_error(status.HTTP_400_BAD_REQUEST, "Invalid webhook payload")

    event = payload["event"]
    if event not in constants.WEBHOOK_UNLOCK_EVENTS:
        logger.info(f"[Webhook] Received event type: {event} (not processed)")
        return WebhookResponse(success=True, message="Event received")

    lock_id = _lock_id(payload)
    if lock_id is None:
        logger.error(f"[Webhook] Unlock event missing lock ID [{request_id}]")
        return _webhook_error(status.HTTP_400_BAD_REQUEST, "Missing lock ID")

    user_name = _user_name(payload)
    logger.info(f"[Webhook] Processing unlock request for lock: {lock_id}, user: {user_name}")

    mapping = bridge.get_door_mapping(lock_id)
    if mapping is None:
        logger.error(f"[Webhook] No door mapping found for lock: {lock_id}")
        return _webhook_error(
            status.HTTP_404_NOT_FOUND,
            "No door mapping found",
            lockId=lock_id,
            message="Map this lock to a controller door before sending unlock requests",
        )
    if not mapping.enabled:
        logger.warning(f"[Webhook] Mapping disabled for lock: {lock_id}")
        return _webhook_error(status.HTTP_409_CONFLICT, "Door mapping is disabled", lockId=lock_id)

    try:
        await bridge.unlock_door(mapping, source="webhook", user=user_name)
    except Exception as e:
        logger.error(
            f"[Webhook] Failed to unlock door {mapping.name} ({mapping.controller_door_id}): {str(e)}"
        )
        return _webhook_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            getattr(e, "message", None) or str(e) or "Failed to unlock door",
            doorId=mapping.controller_door_id,
        )

    logger.info(
        f"[Webhook] Successfully unlocked door {mapping.name} ({mapping.controller_door_id}) for user {user_name}"
    )
    return WebhookResponse(
        success=True,
        message="Door unlocked",
        door_name=mapping.name,
        door_id=mapping.controller_door_id,
    )
