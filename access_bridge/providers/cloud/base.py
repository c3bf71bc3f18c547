from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List

from access_bridge.providers.controller.base import ControllerEndpoint
from access_bridge.services.schemas import DoorMapping, TranslatedEvent, UnlockCommand

UnlockCommandCallback = Callable[[UnlockCommand], Awaitable[None]]


class CloudAdapter(ABC):
    """Abstract base class for cloud credential service clients."""

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def authenticate(self) -> bool:
        pass

    @abstractmethod
    def set_controller_endpoint(self, endpoint: ControllerEndpoint) -> None:
        """Tell the cloud side how to reach the local controller."""
        pass

    @abstractmethod
    async def register_door(self, mapping: DoorMapping) -> bool:
        """Register a door with the cloud service."""
        pass

    @abstractmethod
    async def start_door(self, lock_id: str) -> bool:
        """Begin monitoring a lock for unlock commands."""
        pass

    @abstractmethod
    async def stop_door(self, lock_id: str) -> bool:
        pass

    @abstractmethod
    async def send_door_event(self, lock_id: str, event: TranslatedEvent) -> bool:
        """Forward a translated door event."""
        pass

    @abstractmethod
    async def start_command_listener(self, callback: UnlockCommandCallback) -> None:
        """Deliver unlock commands to callback until stopped."""
        pass

    @abstractmethod
    async def stop_command_listener(self) -> None:
        pass

    @abstractmethod
    def active_doors(self) -> List[str]:
        """Lock ids currently monitored."""
        pass

    @abstractmethod
    async def check_connection(self) -> bool:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass
