"""
Synchronous listener registry used for typed notifications.

Components own a Notifier and emit frozen dataclass messages through it.
Listeners are called in registration order; a listener that raises is
logged and skipped so one bad subscriber cannot break the emitter (or a
timer callback that happens to be emitting).
"""

import logging
from typing import Any, Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

M = TypeVar("M")


class Notifier(Generic[M]):
    """Ordered fan-out of messages of one type to registered callbacks."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Callable[[M], Any]] = []

    def subscribe(self, callback: Callable[[M], Any]) -> Callable[[], None]:
        """Register a callback. Returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def emit(self, message: M) -> None:
        for callback in list(self._listeners):
            try:
                callback(message)
            except Exception as e:
                logger.error(
                    f"{self.name} listener {getattr(callback, '__name__', callback)!r} "
                    f"failed on {type(message).__name__}: {str(e)}",
                    exc_info=True,
                )

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
