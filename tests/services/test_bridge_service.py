"""Tests for services/bridge_service.py: lifecycle, sync, unlock and event paths."""

import asyncio

import pytest

from access_bridge.core.circuit_breaker import CircuitState
from access_bridge.core.exceptions import (
    CircuitBreakerOpenError,
    CloudError,
    ConfigurationError,
    ControllerError,
    ServiceStateError,
)
from access_bridge.core.health_monitor import HealthStatus
from access_bridge.providers.controller.simulated import SimulatedController
from access_bridge.services.bridge_service import BridgeService
from access_bridge.services.schemas import (
    DoorEvent,
    DoorsSynced,
    DoorUnlocked,
    HealthChanged,
    ServiceState,
    StateChanged,
    UnlockCommand,
)


def mapping_record(lock_id="lock-door-1", door_id="door-1", **overrides):
    data = {
        "id": f"mapping-{door_id}",
        "cloudLockId": lock_id,
        "controllerDoorId": door_id,
        "siteId": "site-test",
        "name": "Front Door",
        "enabled": True,
    }
    data.update(overrides)
    return data


# ============================================================================
# LIFECYCLE
# ============================================================================


async def test_start_requires_initialize():
    with pytest.raises(ServiceStateError):
        await BridgeService().start()


async def test_lifecycle_transitions(bridge, controller, cloud):
    states = []
    bridge.subscribe(lambda m: states.append(m.current) if isinstance(m, StateChanged) else None)
    assert bridge.get_state() == ServiceState.STOPPED

    await bridge.start()
    assert bridge.is_running
    assert controller.listening and cloud.listening
    assert bridge.event_translator.is_processing
    assert bridge.get_stats().started_at is not None

    await bridge.stop()
    assert bridge.get_state() == ServiceState.STOPPED
    assert not controller.listening and not cloud.listening
    assert not bridge.event_translator.is_processing

    assert states == [
        ServiceState.STARTING,
        ServiceState.RUNNING,
        ServiceState.STOPPING,
        ServiceState.STOPPED,
    ]


async def test_stop_and_start_are_idempotent(running_bridge):
    await running_bridge.start()
    assert running_bridge.is_running
    await running_bridge.stop()
    await running_bridge.stop()
    assert running_bridge.get_state() == ServiceState.STOPPED


async def test_restart_after_stop(running_bridge, controller):
    await running_bridge.stop()
    await running_bridge.start()
    assert running_bridge.is_running
    assert controller.listening


async def test_initialize_hands_controller_endpoint_to_cloud(bridge, cloud):
    assert cloud.endpoint is not None
    assert cloud.endpoint.base_url == "https://controller.local"
    assert cloud.endpoint.username == "admin"
    assert "hunter22" not in repr(cloud.endpoint)


async def test_initialize_rejects_webhook_without_secret(bridge_factory, settings_factory):
    settings = settings_factory(webhook_secret=None)
    with pytest.raises(ConfigurationError):
        await bridge_factory(settings)


async def test_start_failure_sets_error_state(bridge, cloud):
    cloud.reachable = False
    with pytest.raises(CloudError):
        await bridge.start()
    assert bridge.get_state() == ServiceState.ERROR
    assert bridge.get_stats().errors == 1


async def test_late_start_failure_stops_background_work(bridge_factory, settings_factory, controller, cloud):
    bridge = await bridge_factory(settings_factory(health_check_enabled=True, health_check_interval=10))

    async def refuse(callback):
        raise CloudError("command channel refused")

    cloud.start_command_listener = refuse

    with pytest.raises(CloudError):
        await bridge.start()
    await asyncio.sleep(0.05)

    assert bridge.get_state() == ServiceState.ERROR
    assert not bridge.event_translator.is_processing
    assert not bridge.health_monitor.is_active()
    assert not controller.listening and not cloud.listening


async def test_stats_are_a_copy(running_bridge):
    stats = running_bridge.get_stats()
    stats.unlocks_processed = 99
    assert running_bridge.get_stats().unlocks_processed == 0


# ============================================================================
# DOOR SYNC
# ============================================================================


async def test_sync_creates_mappings_for_new_doors(bridge_factory, settings, cloud):
    controller = SimulatedController(
        doors=[{"id": "d1", "name": "One"}, {"id": "d2", "name": "Two"}, {"id": "d3", "name": "Three"}]
    )
    bridge = await bridge_factory(settings, controller=controller)
    synced = []
    bridge.subscribe(lambda m: synced.append(m.summary) if isinstance(m, DoorsSynced) else None)

    await bridge.start()

    summary = synced[-1]
    assert (summary.total, summary.synced, summary.failed) == (3, 3, 0)
    assert summary.active_mappings == 3
    assert bridge.get_stats().active_mappings == 3

    mapping = bridge.get_door_mapping("lock-d1")
    assert mapping.id == "mapping-d1"
    assert mapping.controller_door_id == "d1"
    assert mapping.site_id == "site-test"
    assert sorted(cloud.registered) == ["lock-d1", "lock-d2", "lock-d3"]
    assert cloud.active_doors() == ["lock-d1", "lock-d2", "lock-d3"]


async def test_resync_counts_existing_mappings(running_bridge):
    summary = await running_bridge.sync_doors()
    assert summary.total == 2
    assert summary.synced == 2
    assert summary.already_synced == 2
    assert len(running_bridge.get_door_mappings()) == 2


async def test_sync_keeps_door_when_cloud_registration_fails(bridge, cloud):
    cloud.registration_result = False
    await bridge.start()
    assert len(bridge.get_door_mappings()) == 2
    assert cloud.registered == {}
    assert cloud.active_doors() == []


async def test_sync_collects_per_door_failures(bridge):
    # lock-door-2 is taken by a mapping for some other door
    await bridge.add_door_mapping(mapping_record(lock_id="lock-door-2", door_id="other-door", name="Other"))

    await bridge.start()
    summary = await bridge.sync_doors()

    assert summary.total == 2
    assert summary.failed == 1
    assert summary.failed_doors[0].door_id == "door-2"
    assert "lock-door-2" in summary.failed_doors[0].error
    assert bridge.is_running


async def test_sync_with_no_doors(bridge_factory, settings):
    bridge = await bridge_factory(settings, controller=SimulatedController(doors=[]))
    await bridge.start()
    summary = await bridge.sync_doors()
    assert summary.total == 0
    assert summary.active_mappings == 0


# ============================================================================
# UNLOCK PATH
# ============================================================================


async def test_cloud_unlock_command_unlocks_mapped_door(running_bridge, controller, cloud):
    unlocked = []
    running_bridge.subscribe(lambda m: unlocked.append(m) if isinstance(m, DoorUnlocked) else None)

    await cloud.push_unlock_command(UnlockCommand(lock_id="lock-door-1", user_name="Ada"))

    assert controller.unlock_calls == ["door-1"]
    assert running_bridge.get_stats().unlocks_processed == 1
    assert unlocked[0].source == "cloud"
    assert unlocked[0].user == "Ada"


async def test_unlock_for_unmapped_lock_is_ignored(running_bridge, controller, cloud, caplog):
    with caplog.at_level("WARNING"):
        await cloud.push_unlock_command(UnlockCommand(lock_id="L9"))

    assert controller.unlock_calls == []
    assert running_bridge.get_stats().unlocks_processed == 0
    assert "No mapping found for lock: L9" in caplog.text


async def test_unlock_for_disabled_mapping_is_ignored(running_bridge, controller, cloud):
    await running_bridge.update_door_mapping("lock-door-1", {"enabled": False})
    await cloud.push_unlock_command(UnlockCommand(lock_id="lock-door-1"))
    assert controller.unlock_calls == []


async def test_unlock_returning_false_is_retried_then_counted(running_bridge, controller, cloud):
    controller.unlock_result = False
    await cloud.push_unlock_command(UnlockCommand(lock_id="lock-door-1"))

    assert controller.unlock_calls == ["door-1"] * 3
    stats = running_bridge.get_stats()
    assert stats.unlocks_processed == 0
    assert stats.errors == 1
    assert "CONTROLLER_ERROR" in stats.last_error


async def test_unlock_door_raises_for_callers(running_bridge, controller):
    controller.reachable = False
    mapping = running_bridge.get_door_mapping("lock-door-1")
    with pytest.raises(ControllerError):
        await running_bridge.unlock_door(mapping, source="webhook")


async def test_breaker_rejects_after_threshold_without_calling_controller(
    bridge_factory, settings_factory, controller
):
    settings = settings_factory(
        retry_enabled=False,
        circuit_breaker_failure_threshold=5,
        circuit_breaker_timeout=10,
    )
    bridge = await bridge_factory(settings)
    await bridge.start()
    mapping = bridge.get_door_mapping("lock-door-1")
    controller.reachable = False

    for _ in range(5):
        with pytest.raises(ControllerError):
            await bridge.unlock_door(mapping)
    assert len(controller.unlock_calls) == 5
    assert bridge.controller_breaker.get_state() == CircuitState.OPEN

    with pytest.raises(CircuitBreakerOpenError):
        await bridge.unlock_door(mapping)
    assert len(controller.unlock_calls) == 5


async def test_breaker_rejection_is_not_retried(bridge_factory, settings_factory, controller):
    settings = settings_factory(
        retry_max_attempts=3,
        circuit_breaker_failure_threshold=5,
        circuit_breaker_timeout=10,
    )
    bridge = await bridge_factory(settings)
    await bridge.start()
    mapping = bridge.get_door_mapping("lock-door-1")
    controller.reachable = False

    with pytest.raises(ControllerError):
        await bridge.unlock_door(mapping)
    assert len(controller.unlock_calls) == 3

    # two more failures open the breaker; the third attempt is rejected, not retried
    with pytest.raises(CircuitBreakerOpenError):
        await bridge.unlock_door(mapping)
    assert len(controller.unlock_calls) == 5


# ============================================================================
# EVENT PATH
# ============================================================================


async def test_door_event_is_forwarded_once(running_bridge, controller, cloud):
    event = DoorEvent(door_id="door-1", type="opened")
    await controller.emit_event(event)
    await controller.emit_event(event)
    await asyncio.sleep(0.05)

    assert len(cloud.sent_events) == 1
    lock_id, translated = cloud.sent_events[0]
    assert lock_id == "lock-door-1"
    assert translated.event_type == "door.opened"
    assert running_bridge.get_stats().events_forwarded == 1


async def test_unmapped_and_disabled_door_events_are_dropped(running_bridge, controller, cloud):
    await running_bridge.update_door_mapping("lock-door-2", {"enabled": False})
    await controller.emit_event(DoorEvent(door_id="unknown", type="opened"))
    await controller.emit_event(DoorEvent(door_id="door-2", type="opened"))
    await asyncio.sleep(0.05)

    assert cloud.sent_events == []
    assert running_bridge.event_translator.queue_size() == 0


async def test_rejected_event_is_retried_then_dropped(running_bridge, controller, cloud):
    cloud.send_result = False
    await controller.emit_event(DoorEvent(door_id="door-1", type="forced"))
    await asyncio.sleep(0.2)

    stats = running_bridge.event_translator.get_stats()
    assert stats["dropped"] == 1
    assert stats["queue_size"] == 0
    assert running_bridge.get_stats().events_forwarded == 0


# ============================================================================
# MAPPINGS & HEALTH
# ============================================================================


async def test_remove_mapping_stops_cloud_monitoring(running_bridge, cloud):
    assert "lock-door-1" in cloud.active_doors()
    await running_bridge.remove_door_mapping("lock-door-1")
    assert "lock-door-1" not in cloud.active_doors()
    assert running_bridge.get_stats().active_mappings == 1


async def test_health_degrades_without_stopping_service(bridge_factory, settings_factory, controller):
    settings = settings_factory(health_check_enabled=True, health_check_interval=10, health_failure_threshold=2)
    bridge = await bridge_factory(settings)
    changes = []
    bridge.subscribe(lambda m: changes.append(m) if isinstance(m, HealthChanged) else None)

    await bridge.start()
    await asyncio.sleep(0.02)
    health = bridge.get_health()
    assert health["overall"] == HealthStatus.HEALTHY.value
    assert {c["name"] for c in health["components"]} == {"controller", "cloud"}

    controller.reachable = False
    await bridge.health_monitor.run_checks()
    await bridge.health_monitor.run_checks()

    health = bridge.get_health()
    assert health["overall"] == HealthStatus.UNHEALTHY.value
    assert health["state"] == ServiceState.RUNNING.value
    assert set(health["circuit_breakers"]) == {"controller", "cloud"}
    assert "queue_size" in health["event_queue"]
    assert [c.status for c in changes if c.component == "controller"] == ["degraded", "unhealthy"]
