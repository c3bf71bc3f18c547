# ============================================================================
# API Models - Request and Response Schemas
# ============================================================================

"""
Pydantic models for API request/response validation.
Used for type hints and OpenAPI documentation.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from access_bridge.services.schemas import BridgeStats


# ============================================================================
# STATUS / HEALTH RESPONSES
# ============================================================================


class LivenessResponse(BaseModel):
    """Response for GET /api/health."""
    status: str = "ok"
    timestamp: str
    uptime: float


class StatusResponse(BaseModel):
    """Response for GET /api/status."""
    state: str
    running: bool
    stats: BridgeStats
    timestamp: str


class ComponentHealthResponse(BaseModel):
    """Response for GET /api/health/components."""
    overall: str
    state: str
    components: List[Dict[str, Any]] = []
    stats: Dict[str, Any] = {}
    circuit_breakers: Dict[str, Any] = {}
    event_queue: Dict[str, Any] = {}


# ============================================================================
# MAPPINGS
# ============================================================================


class MappingListResponse(BaseModel):
    mappings: List[Dict[str, Any]] = []
    count: int = 0


class MappingResponse(BaseModel):
    mapping: Dict[str, Any]


# ============================================================================
# SERVICE
# ============================================================================


class LogsResponse(BaseModel):
    """Response for GET /api/service/logs."""
    logs: List[Dict[str, Any]] = []
    count: int = 0
    summary: Dict[str, Any] = {}


class ConfigResponse(BaseModel):
    """Response for GET /api/config. Secrets are redacted."""
    timestamp: str
    config: Dict[str, Any] = {}


# ============================================================================
# WEBHOOK
# ============================================================================


class WebhookResponse(BaseModel):
    """Response for POST /webhook/{provider}."""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "success": True,
                "message": "Door unlocked",
                "doorName": "Front Door",
                "doorId": "door-1",
            }
        },
    )

    success: bool = True
    message: str
    door_name: Optional[str] = Field(default=None, alias="doorName")
    door_id: Optional[str] = Field(default=None, alias="doorId")


# ============================================================================
# GENERIC ERROR RESPONSE
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "MappingNotFoundError",
                "error_code": "MAPPING_NOT_FOUND",
                "message": "No mapping for lock lock-9",
                "request_id": "3f0c2e1a-...",
            }
        }
    )

    error: str
    error_code: Optional[str] = None
    message: str
    request_id: Optional[str] = None
    context: Dict[str, Any] = {}
