"""
================================================================================
FILE: access_bridge/services/schemas.py
================================================================================

PURPOSE:
    Domain types shared by the services, providers and API:
      - ServiceState, DoorEventType enums
      - DoorMapping (persisted record)
      - ControllerDoor, DoorEvent (controller side)
      - UnlockCommand, TranslatedEvent, DoorState (cloud side)
      - QueuedEvent, BridgeStats, SyncSummary
      - Typed notification messages emitted by the bridge

KEY FACTS:
    - Pydantic models serialize with camelCase aliases (persisted JSON + API)
    - DoorMapping also reads legacy keys doordeckLockId / unifiDoorId
    - Timestamps are aware UTC datetimes, parsed leniently
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictBool, field_validator

from access_bridge.utils.helpers import parse_timestamp, utc_now

# ============================================================================
# ENUMS
# ============================================================================

class ServiceState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class DoorEventType(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"
    OPENED = "opened"
    CLOSED = "closed"
    FORCED = "forced"
    HELD_OPEN = "held_open"
    ACCESS_GRANTED = "access_granted"
    ACCESS_DENIED = "access_denied"


def _normalize_event_type(value: Any) -> Any:
    # "HeldOpen", "held-open", "HELD_OPEN" → "held_open"
    if isinstance(value, str):
        snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", value.strip())
        return re.sub(r"[\s\-]+", "_", snake).lower()
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

# ============================================================================
# MAPPINGS
# ============================================================================

class DoorMapping(_CamelModel):
    """Association between one physical door and one cloud lock."""

    id: str = Field(..., min_length=1)
    cloud_lock_id: str = Field(
        ...,
        min_length=1,
        alias="cloudLockId",
        validation_alias=AliasChoices("cloudLockId", "cloud_lock_id", "doordeckLockId"),
    )
    controller_door_id: str = Field(
        ...,
        min_length=1,
        alias="controllerDoorId",
        validation_alias=AliasChoices("controllerDoorId", "controller_door_id", "unifiDoorId"),
    )
    site_id: str = Field(
        ...,
        min_length=1,
        alias="siteId",
        validation_alias=AliasChoices("siteId", "site_id"),
    )
    name: str = Field(..., min_length=1)
    enabled: StrictBool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(
        default_factory=utc_now,
        alias="createdAt",
        validation_alias=AliasChoices("createdAt", "created_at"),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        alias="updatedAt",
        validation_alias=AliasChoices("updatedAt", "updated_at"),
    )

    @field_validator("id", "cloud_lock_id", "controller_door_id", "site_id", "name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _parse_dates(cls, v: Any) -> Any:
        return parse_timestamp(v) if v is not None else v

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, v: Any) -> Any:
        return {} if v is None else v

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class MappingUpdate(_CamelModel):
    """Partial update; unset fields are left untouched."""

    controller_door_id: Optional[str] = Field(
        default=None,
        alias="controllerDoorId",
        validation_alias=AliasChoices("controllerDoorId", "controller_door_id", "unifiDoorId"),
    )
    site_id: Optional[str] = Field(
        default=None, alias="siteId", validation_alias=AliasChoices("siteId", "site_id")
    )
    name: Optional[str] = None
    enabled: Optional[StrictBool] = None
    metadata: Optional[Dict[str, Any]] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)

# ============================================================================
# CONTROLLER SIDE
# ============================================================================

class ControllerDoor(_CamelModel):
    id: str
    name: str
    floor: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DoorEvent(_CamelModel):
    """Physical door event as surfaced by the controller adapter."""

    door_id: str = Field(..., alias="doorId", validation_alias=AliasChoices("doorId", "door_id"))
    type: DoorEventType
    timestamp: datetime = Field(default_factory=utc_now)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _event_type(cls, v: Any) -> Any:
        return _normalize_event_type(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp(cls, v: Any) -> Any:
        return parse_timestamp(v)

# ============================================================================
# CLOUD SIDE
# ============================================================================

class UnlockCommand(_CamelModel):
    lock_id: str = Field(..., alias="lockId", validation_alias=AliasChoices("lockId", "lock_id"))
    user_id: Optional[str] = Field(
        default=None, alias="userId", validation_alias=AliasChoices("userId", "user_id")
    )
    user_name: Optional[str] = Field(
        default=None, alias="userName", validation_alias=AliasChoices("userName", "user_name")
    )
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp(cls, v: Any) -> Any:
        return parse_timestamp(v)


class DoorState(_CamelModel):
    locked: Optional[bool] = None
    opened: Optional[bool] = None
    forced: Optional[bool] = None
    held_open: Optional[bool] = Field(default=None, alias="heldOpen")


class TranslatedEvent(_CamelModel):
    """Outbound cloud event. Pure output of (DoorEvent, DoorMapping)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    lock_id: str = Field(..., alias="lockId")
    event_type: str = Field(..., alias="eventType")
    timestamp: str
    state: DoorState = Field(default_factory=DoorState)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

# ============================================================================
# QUEUE / STATS
# ============================================================================

@dataclass
class QueuedEvent:
    id: str
    translated_event: TranslatedEvent
    source_event: DoorEvent
    mapping: DoorMapping
    enqueued_at: float
    attempts: int = 0


class BridgeStats(BaseModel):
    """Aggregate counters. Always handed out as a copy."""

    state: ServiceState = ServiceState.STOPPED
    started_at: Optional[datetime] = None
    active_mappings: int = 0
    unlocks_processed: int = 0
    events_forwarded: int = 0
    errors: int = 0
    last_error: Optional[str] = None


class FailedDoor(BaseModel):
    door_id: str
    name: str
    error: str


class SyncSummary(BaseModel):
    total: int = 0
    synced: int = 0
    already_synced: int = 0
    failed: int = 0
    active_mappings: int = 0
    failed_doors: List[FailedDoor] = Field(default_factory=list)

# ============================================================================
# NOTIFICATION MESSAGES
# ============================================================================

@dataclass(frozen=True)
class EventReady:
    """A translated event due for delivery to the cloud."""

    event_id: str
    event: TranslatedEvent
    mapping: DoorMapping
    attempt: int


@dataclass(frozen=True)
class MappingChange:
    action: str  # added | updated | removed
    mapping: DoorMapping


@dataclass(frozen=True)
class MappingsBulkChange:
    action: str  # loaded | saved | cleared | imported
    count: int


@dataclass(frozen=True)
class StateChanged:
    previous: ServiceState
    current: ServiceState


@dataclass(frozen=True)
class DoorsSynced:
    summary: SyncSummary


@dataclass(frozen=True)
class DoorUnlocked:
    mapping: DoorMapping
    source: str  # "cloud" | "webhook" | "api"
    user: Optional[str] = None


@dataclass(frozen=True)
class HealthChanged:
    component: str
    status: str
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
