"""In-memory cloud service (default provider, used for demos and tests)."""

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from access_bridge.core.exceptions import CloudError
from access_bridge.providers.cloud.base import CloudAdapter, UnlockCommandCallback
from access_bridge.providers.controller.base import ControllerEndpoint
from access_bridge.services.schemas import DoorMapping, TranslatedEvent, UnlockCommand

logger = logging.getLogger(__name__)


class SimulatedCloud(CloudAdapter):
    """
    Cloud side that records what it is sent.

    Failure injection: `reachable = False` fails every call;
    `registration_result` / `send_result` control return values.
    """

    def __init__(self) -> None:
        self.reachable = True
        self.registration_result = True
        self.send_result = True
        self.authenticated = False
        self.endpoint: Optional[ControllerEndpoint] = None
        self.registered: Dict[str, DoorMapping] = {}
        self.sent_events: List[Tuple[str, TranslatedEvent]] = []
        self._active: Set[str] = set()
        self._callback: Optional[UnlockCommandCallback] = None

    async def initialize(self) -> None:
        logger.info("✓ SimulatedCloud initialized")

    def _ensure_reachable(self, operation: str) -> None:
        if not self.reachable:
            raise CloudError(f"Cloud unreachable during {operation}", status_code=503)

    async def authenticate(self) -> bool:
        self._ensure_reachable("authenticate")
        self.authenticated = True
        return True

    def set_controller_endpoint(self, endpoint: ControllerEndpoint) -> None:
        self.endpoint = endpoint
        logger.info(f"Controller endpoint set: {endpoint!r}")

    async def register_door(self, mapping: DoorMapping) -> bool:
        self._ensure_reachable("register_door")
        if self.registration_result:
            self.registered[mapping.cloud_lock_id] = mapping
        return self.registration_result

    async def start_door(self, lock_id: str) -> bool:
        self._ensure_reachable("start_door")
        self._active.add(lock_id)
        return True

    async def stop_door(self, lock_id: str) -> bool:
        self._ensure_reachable("stop_door")
        self._active.discard(lock_id)
        return True

    async def send_door_event(self, lock_id: str, event: TranslatedEvent) -> bool:
        self._ensure_reachable("send_door_event")
        if self.send_result:
            self.sent_events.append((lock_id, event))
        return self.send_result

    async def start_command_listener(self, callback: UnlockCommandCallback) -> None:
        self._callback = callback

    async def stop_command_listener(self) -> None:
        self._callback = None

    @property
    def listening(self) -> bool:
        return self._callback is not None

    async def push_unlock_command(self, command: UnlockCommand) -> None:
        """Deliver an unlock command as if a mobile user had requested it."""
        if self._callback is not None:
            await self._callback(command)

    def active_doors(self) -> List[str]:
        return sorted(self._active)

    async def check_connection(self) -> bool:
        return self.reachable

    async def disconnect(self) -> None:
        self._callback = None
        self._active.clear()
        self.authenticated = False
        logger.info("SimulatedCloud disconnected")


def create_provider(settings: Any) -> SimulatedCloud:
    return SimulatedCloud()
