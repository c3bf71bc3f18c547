"""Fixtures for the HTTP layer: an app around a running bridge plus an httpx client."""

import httpx
import pytest

from access_bridge.api.main import create_app
from access_bridge.core.log_buffer import LogBuffer


@pytest.fixture
def log_buffer():
    return LogBuffer(max_size=100)


@pytest.fixture
def app_factory(log_buffer):
    def factory(settings, bridge):
        return create_app(settings, bridge=bridge, log_buffer=log_buffer, manage_lifecycle=False)

    return factory


@pytest.fixture
async def client(app_factory, settings, running_bridge):
    app = app_factory(settings, running_bridge)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
