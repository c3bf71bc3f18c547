"""Shared pytest fixtures for all tests."""

import pytest

from access_bridge.config.settings import Settings
from access_bridge.container import ServiceContainer
from access_bridge.providers.cloud.simulated import SimulatedCloud
from access_bridge.providers.controller.simulated import SimulatedController
from access_bridge.services.bridge_service import BridgeService

WEBHOOK_SECRET = "test-webhook-secret"

DOORS = [
    {"id": "door-1", "name": "Front Door", "floor": "1"},
    {"id": "door-2", "name": "Back Door"},
]


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings with short timers and the mapping file under tmp_path."""
    values = dict(
        environment="test",
        log_level="DEBUG",
        controller_host="controller.local",
        controller_username="admin",
        controller_password="hunter22",
        site_id="site-test",
        mappings_file=str(tmp_path / "door-mappings.json"),
        mapping_save_delay=0.01,
        health_check_enabled=False,
        health_check_interval=0.05,
        health_check_timeout=0.05,
        health_failure_threshold=2,
        circuit_breaker_failure_threshold=3,
        circuit_breaker_success_threshold=1,
        circuit_breaker_timeout=0.1,
        retry_max_attempts=3,
        retry_initial_delay=0.001,
        retry_max_delay=0.01,
        event_dedup_window=5.0,
        event_processing_delay=0.01,
        event_batch_size=10,
        event_max_attempts=3,
        webhook_enabled=True,
        webhook_provider="cloud",
        webhook_secret=WEBHOOK_SECRET,
        webhook_verify_signature=True,
        api_key=None,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def controller():
    return SimulatedController(doors=DOORS)


@pytest.fixture
def cloud():
    return SimulatedCloud()


@pytest.fixture
def settings_factory(tmp_path):
    def factory(**overrides):
        return make_settings(tmp_path, **overrides)

    return factory


@pytest.fixture
async def bridge_factory(controller, cloud):
    """Build initialized (not started) bridges; all are shut down after the test."""
    created = []

    async def factory(settings, controller=controller, cloud=cloud):
        container = ServiceContainer(settings, controller=controller, cloud=cloud)
        bridge = BridgeService(container=container)
        created.append(bridge)
        await bridge.initialize(settings)
        return bridge

    yield factory

    for bridge in created:
        await bridge.shutdown()


@pytest.fixture
async def bridge(bridge_factory, settings):
    return await bridge_factory(settings)


@pytest.fixture
async def running_bridge(bridge):
    await bridge.start()
    return bridge
