"""In-memory door controller (default provider, used for demos and tests)."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from access_bridge.core.exceptions import ControllerError
from access_bridge.providers.controller.base import ControllerAdapter, DoorEventCallback
from access_bridge.services.schemas import ControllerDoor, DoorEvent

logger = logging.getLogger(__name__)


class SimulatedController(ControllerAdapter):
    """
    Controller backed by a fixed list of doors.

    Failure injection: set `reachable = False` to make every call fail, or
    `unlock_result = False` to make unlocks report failure without raising.
    """

    def __init__(self, doors: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        self.doors: List[ControllerDoor] = [ControllerDoor.model_validate(d) for d in doors or []]
        self.reachable = True
        self.unlock_result = True
        self.authenticated = False
        self.unlock_calls: List[str] = []
        self._callback: Optional[DoorEventCallback] = None
        self.initialized = False

    async def initialize(self) -> None:
        self.initialized = True
        logger.info(f"✓ SimulatedController initialized ({len(self.doors)} doors)")

    def _ensure_reachable(self, operation: str) -> None:
        if not self.reachable:
            raise ControllerError(f"Controller unreachable during {operation}", status_code=503)

    async def authenticate(self) -> bool:
        self._ensure_reachable("authenticate")
        self.authenticated = True
        return True

    async def discover_doors(self) -> List[ControllerDoor]:
        self._ensure_reachable("discover_doors")
        return [d.model_copy() for d in self.doors]

    async def unlock(self, door_id: str) -> bool:
        self.unlock_calls.append(door_id)
        self._ensure_reachable("unlock")
        if not any(d.id == door_id for d in self.doors):
            raise ControllerError(f"Unknown door: {door_id}", status_code=404)
        return self.unlock_result

    async def start_event_listener(self, callback: DoorEventCallback) -> None:
        self._callback = callback

    async def stop_event_listener(self) -> None:
        self._callback = None

    @property
    def listening(self) -> bool:
        return self._callback is not None

    async def emit_event(self, event: DoorEvent) -> None:
        """Push a door event as if the controller had reported it."""
        if self._callback is not None:
            await self._callback(event)

    async def check_connection(self) -> bool:
        return self.reachable

    async def disconnect(self) -> None:
        self._callback = None
        self.authenticated = False
        logger.info("SimulatedController disconnected")


def create_provider(settings: Any) -> SimulatedController:
    return SimulatedController(doors=settings.simulated_doors)
