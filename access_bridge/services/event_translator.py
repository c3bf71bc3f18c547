"""
================================================================================
FILE: access_bridge/services/event_translator.py
================================================================================

PURPOSE:
    Converts physical door events into outbound cloud events, suppresses
    duplicates inside a rolling window, bounds memory under bursts and drains
    the queue on a timer towards the registered delivery handlers.

WORKFLOW:
    1. translate_and_queue(event, mapping):
         id = "<lockId>:<type>:<epoch ms>"
         seen within the dedup window → return False
         queue full → evict the oldest 10% (at least one, or enough to get
         back under a lowered bound)
         enqueue QueuedEvent, remember id until the window elapses → True
    2. start(): every processing_delay seconds, process_queue() pops up to
       batch_size events (FIFO) and awaits every delivery handler with an
       EventReady message
    3. A handler that returns False or raises marks the delivery failed:
       the event goes to the BACK of the queue until max_attempts, then it is
       dropped and logged
    4. stop() pauses: the dedup set is cleared, queued events stay in memory
       and an interrupted delivery is not counted as an attempt

EVENT TYPE MAPPING:
    unlocked       → door.unlocked    locked=False
    locked         → door.locked      locked=True
    opened         → door.opened      opened=True
    closed         → door.closed      opened=False
    forced         → door.forced      forced=True, opened=True
    held_open      → door.held_open   held_open=True, opened=True
    access_granted → access.granted   (metadata only)
    access_denied  → access.denied    (metadata only)

KEY FACTS:
    - Retried events lose their position relative to newer events
    - Exceptions never escape the processing loop
    - The queue is volatile (not persisted)
"""

import asyncio
import logging
import math
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from access_bridge.config import constants
from access_bridge.services.schemas import (
    DoorEvent,
    DoorEventType,
    DoorMapping,
    DoorState,
    EventReady,
    QueuedEvent,
    TranslatedEvent,
)
from access_bridge.utils.helpers import to_epoch_ms

logger = logging.getLogger(__name__)

DeliveryHandler = Callable[[EventReady], Awaitable[Optional[bool]]]

_EVENT_TYPES: Dict[DoorEventType, str] = {
    DoorEventType.UNLOCKED: "door.unlocked",
    DoorEventType.LOCKED: "door.locked",
    DoorEventType.OPENED: "door.opened",
    DoorEventType.CLOSED: "door.closed",
    DoorEventType.FORCED: "door.forced",
    DoorEventType.HELD_OPEN: "door.held_open",
    DoorEventType.ACCESS_GRANTED: "access.granted",
    DoorEventType.ACCESS_DENIED: "access.denied",
}

_DOOR_STATES: Dict[DoorEventType, Dict[str, bool]] = {
    DoorEventType.UNLOCKED: {"locked": False},
    DoorEventType.LOCKED: {"locked": True},
    DoorEventType.OPENED: {"opened": True},
    DoorEventType.CLOSED: {"opened": False},
    DoorEventType.FORCED: {"forced": True, "opened": True},
    DoorEventType.HELD_OPEN: {"held_open": True, "opened": True},
    DoorEventType.ACCESS_GRANTED: {},
    DoorEventType.ACCESS_DENIED: {},
}


def event_id(event: DoorEvent, mapping: DoorMapping) -> str:
    return f"{mapping.cloud_lock_id}:{event.type.value}:{to_epoch_ms(event.timestamp)}"


def translate_event(event: DoorEvent, mapping: DoorMapping) -> TranslatedEvent:
    """Pure translation of a controller event into the cloud schema."""
    return TranslatedEvent(
        lock_id=mapping.cloud_lock_id,
        event_type=_EVENT_TYPES.get(event.type, "door.event"),
        timestamp=event.timestamp.isoformat().replace("+00:00", "Z"),
        state=DoorState(**_DOOR_STATES.get(event.type, {})),
        metadata={
            "controllerDoorId": event.door_id,
            "doorName": mapping.name,
            "siteId": mapping.site_id,
            "originalEvent": dict(event.data),
        },
    )


class EventTranslator:
    """Dedup + bounded FIFO queue + timed delivery of translated events."""

    def __init__(
        self,
        deduplication_window: float = constants.EVENT_DEDUP_WINDOW_SECONDS,
        max_queue_size: int = constants.EVENT_MAX_QUEUE_SIZE,
        processing_delay: float = constants.EVENT_PROCESSING_DELAY_SECONDS,
        batch_size: int = constants.EVENT_BATCH_SIZE,
        max_attempts: int = constants.EVENT_MAX_ATTEMPTS,
    ):
        self._dedup_window = deduplication_window
        self._max_queue_size = max_queue_size
        self._processing_delay = processing_delay
        self._batch_size = batch_size
        self._max_attempts = max_attempts

        self._queue: Deque[QueuedEvent] = deque()
        self._seen: Dict[str, float] = {}
        self._handlers: List[DeliveryHandler] = []
        self._task: Optional[asyncio.Task] = None

        self._delivered = 0
        self._dropped = 0
        self._evicted = 0

    def add_handler(self, handler: DeliveryHandler) -> Callable[[], None]:
        """Register an async delivery handler. Returns an unregister function."""
        self._handlers.append(handler)

        def remove() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return remove

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start(self) -> None:
        if self.is_processing:
            logger.warning("EventTranslator already processing")
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="event-translator")
        logger.info(f"✓ Event translator started (every {self._processing_delay}s, batch {self._batch_size})")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            logger.warning("EventTranslator not processing")
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._seen.clear()
        logger.info(f"Event translator stopped ({len(self._queue)} events in queue)")

    async def shutdown(self) -> None:
        """Stop and discard everything still queued."""
        if self.is_processing:
            await self.stop()
        self.clear_queue()
        self._handlers.clear()

    @property
    def is_processing(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._processing_delay)
            try:
                await self.process_queue()
            except Exception as e:
                logger.error(f"Error processing event queue: {str(e)}", exc_info=True)

    # ========================================================================
    # QUEUEING
    # ========================================================================

    def translate_and_queue(self, event: DoorEvent, mapping: DoorMapping) -> bool:
        """
        Returns:
            True if queued, False if suppressed as a duplicate
        """
        eid = event_id(event, mapping)
        now = time.monotonic()
        self._prune_seen(now)

        if eid in self._seen:
            logger.debug(f"Duplicate event detected, skipping: {eid}")
            return False

        if len(self._queue) >= self._max_queue_size:
            # a lowered bound must be restored in one go
            evict = max(
                len(self._queue) - self._max_queue_size + 1,
                math.floor(self._max_queue_size * 0.1),
                1,
            )
            dropped = 0
            while self._queue and dropped < evict:
                self._queue.popleft()
                dropped += 1
            self._evicted += dropped
            logger.warning(
                f"Event queue full ({self._max_queue_size}), dropped {dropped} oldest events"
            )

        self._queue.append(
            QueuedEvent(
                id=eid,
                translated_event=translate_event(event, mapping),
                source_event=event,
                mapping=mapping,
                enqueued_at=time.time(),
            )
        )
        self._seen[eid] = now + self._dedup_window
        logger.debug(f"Event queued: {eid} (queue size: {len(self._queue)})")
        return True

    def _prune_seen(self, now: float) -> None:
        expired = [eid for eid, expires in self._seen.items() if expires <= now]
        for eid in expired:
            del self._seen[eid]

    # ========================================================================
    # PROCESSING
    # ========================================================================

    async def process_queue(self) -> int:
        """
        Deliver one batch.

        Returns:
            Number of events delivered successfully in this batch
        """
        if not self._queue:
            return 0

        batch = [self._queue.popleft() for _ in range(min(self._batch_size, len(self._queue)))]
        delivered = 0

        for index, queued in enumerate(batch):
            try:
                ok = await self._deliver(queued)
            except asyncio.CancelledError:
                # paused mid-batch: undelivered events go back to the front in order,
                # and the interrupted delivery does not count as an attempt
                queued.attempts -= 1
                self._queue.extendleft(reversed(batch[index:]))
                raise

            if ok:
                delivered += 1
                self._delivered += 1
                logger.debug(f"Event processed: {queued.id}")
            elif queued.attempts < self._max_attempts:
                self._queue.append(queued)
                logger.debug(
                    f"Event re-queued: {queued.id} (attempt {queued.attempts}/{self._max_attempts})"
                )
            else:
                self._dropped += 1
                logger.error(f"Event dropped after {queued.attempts} attempts: {queued.id}")

        return delivered

    async def _deliver(self, queued: QueuedEvent) -> bool:
        queued.attempts += 1
        message = EventReady(
            event_id=queued.id,
            event=queued.translated_event,
            mapping=queued.mapping,
            attempt=queued.attempts,
        )
        for handler in list(self._handlers):
            try:
                result = await handler(message)
            except Exception as e:
                logger.error(f"Error delivering queued event {queued.id}: {str(e)}")
                return False
            if result is False:
                return False
        return True

    # ========================================================================
    # STATS & TUNING
    # ========================================================================

    def get_stats(self) -> Dict[str, Any]:
        self._prune_seen(time.monotonic())
        return {
            "queue_size": len(self._queue),
            "processed_count": len(self._seen),
            "is_processing": self.is_processing,
            "max_queue_size": self._max_queue_size,
            "deduplication_window": self._dedup_window,
            "delivered": self._delivered,
            "dropped": self._dropped,
            "evicted": self._evicted,
        }

    def queue_size(self) -> int:
        return len(self._queue)

    def clear_queue(self) -> int:
        count = len(self._queue)
        self._queue.clear()
        logger.info(f"Event queue cleared ({count} events removed)")
        return count

    def set_deduplication_window(self, seconds: float) -> None:
        self._dedup_window = seconds
        logger.info(f"Deduplication window set to {seconds}s")

    def set_max_queue_size(self, size: int) -> None:
        self._max_queue_size = size
        logger.info(f"Max queue size set to {size}")

    def set_processing_delay(self, seconds: float) -> None:
        """Takes effect from the next tick."""
        self._processing_delay = seconds
        logger.info(f"Processing delay set to {seconds}s")
