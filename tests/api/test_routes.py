"""Tests for the management and status routes in api/routes.py."""

import logging

import httpx
import pytest

from access_bridge.core.log_sanitizer import REDACTED
from access_bridge.services.bridge_service import BridgeService


def new_mapping(**overrides):
    data = {
        "id": "mapping-side",
        "cloudLockId": "lock-side",
        "controllerDoorId": "door-side",
        "siteId": "site-test",
        "name": "Side Door",
    }
    data.update(overrides)
    return data


# ============================================================================
# STATUS
# ============================================================================


async def test_liveness(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["uptime"] >= 0


async def test_status_reports_running_bridge(client):
    response = await client.get("/api/status")
    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "running"
    assert body["running"] is True
    assert body["stats"]["active_mappings"] == 2


async def test_component_health_snapshot(client):
    response = await client.get("/api/health/components")
    assert response.status_code == 200
    body = response.json()
    assert body["overall"] == "healthy"
    assert set(body["circuit_breakers"]) == {"controller", "cloud"}


async def test_request_id_is_echoed(client):
    response = await client.get("/api/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


# ============================================================================
# MAPPINGS
# ============================================================================


async def test_list_and_filter_mappings(client, running_bridge):
    await running_bridge.update_door_mapping("lock-door-2", {"enabled": False})

    body = (await client.get("/api/mappings")).json()
    assert body["count"] == 2
    assert {m["cloudLockId"] for m in body["mappings"]} == {"lock-door-1", "lock-door-2"}

    enabled = (await client.get("/api/mappings", params={"enabled": "true"})).json()
    assert [m["cloudLockId"] for m in enabled["mappings"]] == ["lock-door-1"]

    other_site = (await client.get("/api/mappings", params={"siteId": "elsewhere"})).json()
    assert other_site["count"] == 0


async def test_get_mapping(client):
    response = await client.get("/api/mappings/lock-door-1")
    assert response.status_code == 200
    assert response.json()["mapping"]["controllerDoorId"] == "door-1"

    missing = await client.get("/api/mappings/lock-nope")
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "MAPPING_NOT_FOUND"


async def test_create_mapping(client, running_bridge):
    response = await client.post("/api/mappings", json=new_mapping())
    assert response.status_code == 201
    assert response.json()["mapping"]["cloudLockId"] == "lock-side"
    assert running_bridge.get_door_mapping("lock-side").name == "Side Door"


async def test_create_mapping_conflicts_and_validation(client):
    duplicate = await client.post("/api/mappings", json=new_mapping(cloudLockId="lock-door-1"))
    assert duplicate.status_code == 409
    assert duplicate.json()["error_code"] == "DUPLICATE_MAPPING"

    door_taken = await client.post("/api/mappings", json=new_mapping(controllerDoorId="door-1"))
    assert door_taken.status_code == 409

    invalid = await client.post("/api/mappings", json={"cloudLockId": "lock-x"})
    assert invalid.status_code == 400
    assert invalid.json()["error_code"] == "VALIDATION_ERROR"


async def test_update_mapping(client):
    response = await client.patch("/api/mappings/lock-door-1", json={"name": "Main Entrance", "enabled": False})
    assert response.status_code == 200
    mapping = response.json()["mapping"]
    assert mapping["name"] == "Main Entrance"
    assert mapping["enabled"] is False
    assert mapping["id"] == "mapping-door-1"

    missing = await client.patch("/api/mappings/lock-nope", json={"name": "x"})
    assert missing.status_code == 404


async def test_delete_mapping(client, cloud):
    response = await client.delete("/api/mappings/lock-door-2")
    assert response.status_code == 200
    assert response.json()["mapping"]["cloudLockId"] == "lock-door-2"
    assert "lock-door-2" not in cloud.active_doors()

    assert (await client.get("/api/mappings/lock-door-2")).status_code == 404
    assert (await client.delete("/api/mappings/lock-door-2")).status_code == 404


async def test_manual_door_sync(client):
    response = await client.post("/api/doors/sync")
    assert response.status_code == 200
    summary = response.json()
    assert summary["total"] == 2
    assert summary["already_synced"] == 2
    assert summary["failed"] == 0


# ============================================================================
# SERVICE
# ============================================================================


async def test_service_logs(client, log_buffer):
    for level, message in ((logging.INFO, "bridge started"), (logging.ERROR, "unlock failed for door-1")):
        log_buffer.add_log(logging.LogRecord("access_bridge.test", level, __file__, 1, message, None, None))

    body = (await client.get("/api/service/logs")).json()
    assert body["count"] == 2
    assert body["summary"]["total"] == 2

    errors = (await client.get("/api/service/logs", params={"level": "error"})).json()
    assert [e["message"] for e in errors["logs"]] == ["unlock failed for door-1"]

    searched = (await client.get("/api/service/logs", params={"search": "started", "lines": 1})).json()
    assert searched["count"] == 1


async def test_config_is_redacted(client):
    config = (await client.get("/api/config")).json()["config"]
    assert config["CONTROLLER_PASSWORD"] == REDACTED
    assert config["WEBHOOK_SECRET"] == REDACTED
    assert config["CONTROLLER_HOST"] == "controller.local"


# ============================================================================
# AUTH & UNAVAILABLE BRIDGE
# ============================================================================


async def test_api_key_guards_management_routes(app_factory, settings_factory, running_bridge):
    app = app_factory(settings_factory(api_key="management-key"), running_bridge)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        assert (await client.get("/api/status")).status_code == 401
        assert (await client.get("/api/status", headers={"X-API-Key": "wrong"})).status_code == 401
        assert (await client.get("/api/status", headers={"X-API-Key": "management-key"})).status_code == 200
        assert (await client.get("/api/health")).status_code == 200


@pytest.mark.parametrize("path", ["/api/mappings", "/api/health/components"])
async def test_uninitialized_bridge_is_unavailable(app_factory, settings, path):
    app = app_factory(settings, BridgeService())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(path)
    assert response.status_code == 503
    assert response.json()["error"] == "ServiceStateError"
