from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from access_bridge.services.schemas import ControllerDoor, DoorEvent

DoorEventCallback = Callable[[DoorEvent], Awaitable[None]]


@dataclass(frozen=True)
class ControllerEndpoint:
    """How the cloud side reaches the local controller."""

    base_url: str
    username: str
    credential: str
    door_id: Optional[str] = None

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        return {
            "baseUrl": self.base_url,
            "username": self.username,
            "credential": "[REDACTED]" if redact else self.credential,
            "doorId": self.door_id,
        }

    def for_door(self, door_id: str) -> "ControllerEndpoint":
        return ControllerEndpoint(self.base_url, self.username, self.credential, door_id)

    def __repr__(self) -> str:
        return (
            f"ControllerEndpoint(base_url={self.base_url!r}, username={self.username!r}, "
            f"door_id={self.door_id!r})"
        )


class ControllerAdapter(ABC):
    """Abstract base class for local door controller clients."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the client (no authentication yet)."""
        pass

    @abstractmethod
    async def authenticate(self) -> bool:
        """Authenticate against the controller."""
        pass

    @abstractmethod
    async def discover_doors(self) -> List[ControllerDoor]:
        """List every door the controller manages."""
        pass

    @abstractmethod
    async def unlock(self, door_id: str) -> bool:
        """Momentarily unlock a door."""
        pass

    @property
    def supports_events(self) -> bool:
        return True

    @abstractmethod
    async def start_event_listener(self, callback: DoorEventCallback) -> None:
        """Deliver door events to callback until stopped."""
        pass

    @abstractmethod
    async def stop_event_listener(self) -> None:
        pass

    @abstractmethod
    async def check_connection(self) -> bool:
        """Cheap liveness probe."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release connections and listeners."""
        pass
