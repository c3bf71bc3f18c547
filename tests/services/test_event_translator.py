"""Tests for services/event_translator.py: translation, dedup, queueing and delivery."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from access_bridge.services.event_translator import EventTranslator, event_id, translate_event
from access_bridge.services.schemas import DoorEvent, DoorMapping

T0 = datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def mapping():
    return DoorMapping(
        id="mapping-door-1",
        cloud_lock_id="lock-door-1",
        controller_door_id="door-1",
        site_id="site-test",
        name="Front Door",
    )


def door_event(event_type="opened", at=T0, door_id="door-1", **data):
    return DoorEvent(door_id=door_id, type=event_type, timestamp=at, data=data)


def make_translator(**overrides):
    values = dict(
        deduplication_window=5.0,
        max_queue_size=100,
        processing_delay=0.01,
        batch_size=10,
        max_attempts=3,
    )
    values.update(overrides)
    return EventTranslator(**values)


class Recorder:
    """Delivery handler that records EventReady messages and can be told to fail."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return True


# ============================================================================
# TRANSLATION
# ============================================================================


@pytest.mark.parametrize(
    "event_type, cloud_type, state",
    [
        ("unlocked", "door.unlocked", {"locked": False}),
        ("locked", "door.locked", {"locked": True}),
        ("opened", "door.opened", {"opened": True}),
        ("closed", "door.closed", {"opened": False}),
        ("forced", "door.forced", {"forced": True, "opened": True}),
        ("HeldOpen", "door.held_open", {"heldOpen": True, "opened": True}),
        ("access-granted", "access.granted", {}),
        ("access_denied", "access.denied", {}),
    ],
)
def test_event_vocabulary(mapping, event_type, cloud_type, state):
    translated = translate_event(door_event(event_type), mapping)
    payload = translated.to_payload()
    assert payload["eventType"] == cloud_type
    assert payload.get("state", {}) == state


def test_translation_carries_identity_and_metadata(mapping):
    translated = translate_event(door_event("opened", reader="R1"), mapping)
    assert translated.lock_id == "lock-door-1"
    assert translated.timestamp == "2024-03-01T10:00:00Z"
    assert translated.metadata == {
        "controllerDoorId": "door-1",
        "doorName": "Front Door",
        "siteId": "site-test",
        "originalEvent": {"reader": "R1"},
    }


def test_event_id_format(mapping):
    assert event_id(door_event("opened"), mapping) == f"lock-door-1:opened:{int(T0.timestamp() * 1000)}"


# ============================================================================
# DEDUP & QUEUE
# ============================================================================


def test_duplicate_within_window_is_suppressed(mapping):
    translator = make_translator()
    assert translator.translate_and_queue(door_event("opened"), mapping)
    assert not translator.translate_and_queue(door_event("opened"), mapping)
    assert translator.queue_size() == 1

    # different type or timestamp is a different event
    assert translator.translate_and_queue(door_event("closed"), mapping)
    assert translator.translate_and_queue(door_event("opened", at=T0 + timedelta(milliseconds=1)), mapping)
    assert translator.queue_size() == 3


async def test_duplicate_accepted_again_after_window(mapping):
    translator = make_translator(deduplication_window=0.02)
    assert translator.translate_and_queue(door_event("opened"), mapping)
    await asyncio.sleep(0.05)
    assert translator.translate_and_queue(door_event("opened"), mapping)


def test_full_queue_evicts_oldest_tenth(mapping):
    translator = make_translator(max_queue_size=20)
    for n in range(20):
        translator.translate_and_queue(door_event("opened", at=T0 + timedelta(seconds=n)), mapping)
    assert translator.queue_size() == 20

    translator.translate_and_queue(door_event("opened", at=T0 + timedelta(seconds=100)), mapping)
    assert translator.queue_size() == 19
    assert translator.get_stats()["evicted"] == 2


def test_small_queue_evicts_at_least_one(mapping):
    translator = make_translator(max_queue_size=3)
    for n in range(4):
        translator.translate_and_queue(door_event("opened", at=T0 + timedelta(seconds=n)), mapping)
    assert translator.queue_size() == 3
    assert translator.get_stats()["evicted"] == 1


def test_lowered_bound_is_restored_on_next_enqueue(mapping):
    translator = make_translator(max_queue_size=100)
    for n in range(100):
        translator.translate_and_queue(door_event("opened", at=T0 + timedelta(seconds=n)), mapping)

    translator.set_max_queue_size(10)
    translator.translate_and_queue(door_event("opened", at=T0 + timedelta(seconds=500)), mapping)

    assert translator.queue_size() == 10
    assert translator.get_stats()["evicted"] == 91


# ============================================================================
# DELIVERY
# ============================================================================


async def test_process_queue_delivers_fifo_batch(mapping):
    translator = make_translator(batch_size=2)
    handler = Recorder()
    translator.add_handler(handler)
    for n in range(3):
        translator.translate_and_queue(door_event("opened", at=T0 + timedelta(seconds=n)), mapping)

    assert await translator.process_queue() == 2
    assert translator.queue_size() == 1
    assert await translator.process_queue() == 1

    timestamps = [m.event.timestamp for m in handler.messages]
    assert timestamps == sorted(timestamps)
    assert translator.get_stats()["delivered"] == 3


async def test_failed_delivery_requeued_at_back_then_dropped(mapping):
    translator = make_translator(max_attempts=2)
    handler = Recorder(results=[False, RuntimeError("cloud down"), True])
    translator.add_handler(handler)

    translator.translate_and_queue(door_event("opened"), mapping)
    translator.translate_and_queue(door_event("closed"), mapping)

    # first event fails (False), second raises: both re-queued
    assert await translator.process_queue() == 0
    assert translator.queue_size() == 2

    # first event succeeds on attempt 2; the second fails again and is dropped
    handler.results = [True, False]
    assert await translator.process_queue() == 1
    assert translator.queue_size() == 0
    assert translator.get_stats()["dropped"] == 1
    assert [m.attempt for m in handler.messages] == [1, 1, 2, 2]


async def test_requeued_event_goes_behind_newer_events(mapping):
    translator = make_translator(batch_size=1)
    handler = Recorder(results=[False])
    translator.add_handler(handler)

    translator.translate_and_queue(door_event("opened"), mapping)
    translator.translate_and_queue(door_event("closed"), mapping)

    await translator.process_queue()
    await translator.process_queue()
    assert handler.messages[-1].event.event_type == "door.closed"


async def test_timer_drains_queue_and_stop_keeps_remaining(mapping):
    translator = make_translator(processing_delay=0.01)
    handler = Recorder()
    translator.add_handler(handler)

    translator.start()
    assert translator.is_processing
    translator.translate_and_queue(door_event("opened"), mapping)
    await asyncio.sleep(0.05)
    assert len(handler.messages) == 1

    await translator.stop()
    assert not translator.is_processing
    translator.translate_and_queue(door_event("closed"), mapping)
    await asyncio.sleep(0.03)
    assert translator.queue_size() == 1
    assert len(handler.messages) == 1


async def test_pausing_mid_delivery_does_not_use_up_attempts(mapping):
    translator = make_translator(processing_delay=0.01, max_attempts=3)
    attempts = []
    gate = asyncio.Event()

    async def hanging(message):
        attempts.append(message.attempt)
        await gate.wait()
        return True

    translator.add_handler(hanging)
    translator.translate_and_queue(door_event("opened"), mapping)

    for _ in range(3):
        translator.start()
        await asyncio.sleep(0.03)
        await translator.stop()
        assert translator.queue_size() == 1

    gate.set()
    assert await translator.process_queue() == 1
    assert attempts == [1, 1, 1, 1]
    assert translator.get_stats()["dropped"] == 0


async def test_stop_clears_dedup_set(mapping):
    translator = make_translator()
    translator.start()
    translator.translate_and_queue(door_event("opened"), mapping)
    await translator.stop()
    assert translator.get_stats()["processed_count"] == 0
    assert translator.translate_and_queue(door_event("opened"), mapping)


async def test_remove_handler_and_shutdown(mapping):
    translator = make_translator()
    handler = Recorder()
    remove = translator.add_handler(handler)
    remove()

    translator.translate_and_queue(door_event("opened"), mapping)
    await translator.process_queue()
    assert handler.messages == []

    translator.translate_and_queue(door_event("closed"), mapping)
    await translator.shutdown()
    assert translator.queue_size() == 0


def test_stats_and_setters(mapping):
    translator = make_translator()
    translator.set_deduplication_window(1.5)
    translator.set_max_queue_size(50)
    translator.set_processing_delay(0.2)
    translator.translate_and_queue(door_event("opened"), mapping)

    stats = translator.get_stats()
    assert stats["queue_size"] == 1
    assert stats["processed_count"] == 1
    assert stats["max_queue_size"] == 50
    assert stats["deduplication_window"] == 1.5
    assert stats["is_processing"] is False
    assert translator.clear_queue() == 1
