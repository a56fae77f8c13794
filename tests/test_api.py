"""
Tests for the HTTP surface of the haunting service.

The store is a real SQLite file, the text generator is the deterministic
stub from conftest, and the orchestrator registry is a fresh instance per
test. The lifespan hook does not run under ASGITransport, so the module
globals are patched directly.
"""
import asyncio
import json

import pytest
import pytest_asyncio
from unittest.mock import patch
from httpx import AsyncClient, ASGITransport

from conftest import StubTextGenerator
from haunt_server import main as main_module
from haunt_server.main import app
from haunt_server.orchestration import OrchestratorRegistry
from haunt_server.storage import HauntingStore

USER = {"X-User-Id": "user-1"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def service(temp_db_path):
    """Wire a real store, stub generator and fresh registry into the app."""
    store = HauntingStore(db_path=temp_db_path)
    llm = StubTextGenerator()
    registry = OrchestratorRegistry()

    with patch("haunt_server.main.store", store), \
         patch("haunt_server.main.text_generator", llm), \
         patch("haunt_server.main.registry", registry), \
         patch.object(main_module.settings, "fire_initial_batch", False):
        yield store, llm, registry

    registry.stop_all()


@pytest_asyncio.fixture
async def client(service):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client


async def _setup_user(client, devices=("Porch Light",)):
    response = await client.put("/config", json={"platform": "alexa", "activeTheme": "Classic Ghost"}, headers=USER)
    assert response.status_code == 200
    for name in devices:
        response = await client.post("/devices", json={"name": name, "type": "light"}, headers=USER)
        assert response.status_code == 201


# ---------------------------------------------------------------------------
# Service endpoints
# ---------------------------------------------------------------------------

class TestServiceEndpoints:

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    @pytest.mark.asyncio
    async def test_health(self, client):
        data = (await client.get("/health")).json()
        assert data["status"] == "healthy"
        assert data["active_sessions"] == 0

    @pytest.mark.asyncio
    async def test_missing_user_header_is_unauthorized(self, client):
        response = await client.get("/settings")
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TestSettingsEndpoints:

    @pytest.mark.asyncio
    async def test_get_defaults(self, client):
        data = (await client.get("/settings", headers=USER)).json()
        assert data["minTriggerInterval"] == 5000
        assert data["maxTriggerInterval"] == 30000
        assert data["epilepsyMode"] is False

    @pytest.mark.asyncio
    async def test_partial_update(self, client):
        response = await client.put("/settings", json={"epilepsyMode": True}, headers=USER)
        assert response.status_code == 200
        assert response.json()["epilepsyMode"] is True
        assert response.json()["minTriggerInterval"] == 5000

    @pytest.mark.asyncio
    async def test_invalid_update_is_rejected(self, client):
        response = await client.put(
            "/settings", json={"minTriggerInterval": 20000, "maxTriggerInterval": 10000}, headers=USER
        )
        assert response.status_code == 400
        assert "less than or equal" in response.json()["detail"]

        data = (await client.get("/settings", headers=USER)).json()
        assert data["minTriggerInterval"] == 5000


# ---------------------------------------------------------------------------
# Config and devices
# ---------------------------------------------------------------------------

class TestConfigAndDevices:

    @pytest.mark.asyncio
    async def test_config_not_found(self, client):
        assert (await client.get("/config", headers=USER)).status_code == 404

    @pytest.mark.asyncio
    async def test_config_invalid_platform(self, client):
        response = await client.put("/config", json={"platform": "siri"}, headers=USER)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_device_lifecycle(self, client):
        created = await client.post(
            "/devices",
            json={"name": "Den Speaker", "type": "speaker", "frequency": "frequent"},
            headers=USER,
        )
        assert created.status_code == 201
        device = created.json()
        assert device["selectionWeight"] == 2.0
        assert device["defaultPrompt"]

        patched = await client.patch(f"/devices/{device['id']}", json={"enabled": False}, headers=USER)
        assert patched.json()["enabled"] is False

        weights = (await client.get("/devices/weights", headers=USER)).json()
        assert weights == {device["id"]: 0.0}

        listing = (await client.get("/devices", headers=USER)).json()
        assert listing["count"] == 1

        assert (await client.delete(f"/devices/{device['id']}", headers=USER)).status_code == 200
        assert (await client.delete(f"/devices/{device['id']}", headers=USER)).status_code == 404

    @pytest.mark.asyncio
    async def test_devices_are_scoped_to_user(self, client):
        await client.post("/devices", json={"name": "Lamp", "type": "light"}, headers=USER)
        other = (await client.get("/devices", headers={"X-User-Id": "user-2"})).json()
        assert other["count"] == 0

    @pytest.mark.asyncio
    async def test_patch_missing_device(self, client):
        response = await client.patch("/devices/missing", json={"enabled": False}, headers=USER)
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Haunting sessions
# ---------------------------------------------------------------------------

class TestHauntingEndpoints:

    @pytest.mark.asyncio
    async def test_start_requires_config(self, client):
        response = await client.post("/haunting/start", headers=USER)
        assert response.status_code == 400
        assert "configuration" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_start_requires_enabled_devices(self, client):
        await _setup_user(client, devices=())
        response = await client.post("/haunting/start", headers=USER)
        assert response.status_code == 400
        assert "devices" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_start_runs_scene_setup(self, client, service):
        _, llm, registry = service
        await _setup_user(client, devices=("Porch Light", "Hall Light"))

        response = await client.post("/haunting/start", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["commandsGenerated"] == 2
        assert data["deviceCount"] == 2
        assert data["setupProgress"]["isComplete"] is True
        assert [call["device"] for call in llm.calls] == ["Porch Light", "Hall Light"]
        assert registry.active_users() == ["user-1"]

    @pytest.mark.asyncio
    async def test_start_twice_is_rejected(self, client):
        await _setup_user(client)
        assert (await client.post("/haunting/start", headers=USER)).status_code == 200
        response = await client.post("/haunting/start", headers=USER)
        assert response.status_code == 400
        assert "already active" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_command_is_handed_out_once(self, client, service):
        store, _, _ = service
        await _setup_user(client)
        session_id = (await client.post("/haunting/start", headers=USER)).json()["sessionId"]

        first = (await client.get("/haunting/command", headers=USER)).json()
        assert first["command"]["commandText"] == "Alexa, do something spooky with Porch Light"
        assert first["queueSize"] == 0
        assert first["needsRegeneration"] is True

        second = (await client.get("/haunting/command", headers=USER)).json()
        assert second["command"] is None

        stored = store.get_session("user-1", session_id)
        assert all(cmd.spoken for cmd in stored.command_queue)

    @pytest.mark.asyncio
    async def test_command_falls_back_to_stored_queue(self, client, service):
        """Without an in-process orchestrator the persisted queue is served."""
        store, _, registry = service
        await _setup_user(client)
        await client.post("/haunting/start", headers=USER)
        registry.remove("user-1")

        data = (await client.get("/haunting/command", headers=USER)).json()
        assert data["command"]["deviceName"] == "Porch Light"

        data = (await client.get("/haunting/command", headers=USER)).json()
        assert data["command"] is None

    @pytest.mark.asyncio
    async def test_command_without_session(self, client):
        assert (await client.get("/haunting/command", headers=USER)).status_code == 404

    @pytest.mark.asyncio
    async def test_progress_and_status(self, client):
        await _setup_user(client)
        assert (await client.get("/haunting/progress", headers=USER)).status_code == 404

        await client.post("/haunting/start", headers=USER)

        progress = (await client.get("/haunting/progress", headers=USER)).json()
        assert progress == {"totalDevices": 1, "completedDevices": 1, "currentDevice": None, "isComplete": True}

        status = (await client.get("/haunting/status", headers=USER)).json()
        assert status["active"] is True
        assert status["state"] == "active"
        assert status["agents"] == {"light": "idle"}

    @pytest.mark.asyncio
    async def test_stop(self, client, service):
        store, _, registry = service
        await _setup_user(client)
        session_id = (await client.post("/haunting/start", headers=USER)).json()["sessionId"]

        response = await client.post("/haunting/stop", headers=USER)

        assert response.status_code == 200
        assert response.json()["sessionId"] == session_id
        assert registry.get("user-1") is None
        assert store.get_active_session("user-1") is None
        assert len(store.get_session("user-1", session_id).command_queue) == 1

        status = (await client.get("/haunting/status", headers=USER)).json()
        assert status == {"active": False, "sessionId": None, "state": "stopped", "unspokenCount": 0, "agents": {}}

    @pytest.mark.asyncio
    async def test_stop_without_session(self, client):
        assert (await client.post("/haunting/stop", headers=USER)).status_code == 400

    @pytest.mark.asyncio
    async def test_concurrent_starts_create_one_session(self, client, service):
        store, _, registry = service

        class SlowTextGenerator(StubTextGenerator):
            async def invoke(self, messages, temperature):
                await asyncio.sleep(0.05)
                return await super().invoke(messages, temperature)

        await _setup_user(client)
        with patch("haunt_server.main.text_generator", SlowTextGenerator()):
            responses = await asyncio.gather(
                client.post("/haunting/start", headers=USER),
                client.post("/haunting/start", headers=USER),
            )
            assert sorted(r.status_code for r in responses) == [200, 400]

            assert (await client.post("/haunting/stop", headers=USER)).status_code == 200
            assert store.get_active_session("user-1") is None

            restart = await client.post("/haunting/start", headers=USER)
            assert restart.status_code == 200

    @pytest.mark.asyncio
    async def test_triggered_commands_are_saved_to_session(self, client, service):
        """Commands from the background loop reach the store without a poll."""
        store, _, registry = service
        await _setup_user(client)
        session_id = (await client.post("/haunting/start", headers=USER)).json()["sessionId"]

        await registry.get("user-1").fire_random_device()

        stored = store.get_session("user-1", session_id)
        assert len(stored.command_queue) == 2
        assert [cmd.spoken for cmd in stored.command_queue] == [False, False]


# ---------------------------------------------------------------------------
# Device setup chat
# ---------------------------------------------------------------------------

SAVE_LAMP_REPLY = "Great!\n```json\n" + json.dumps({
    "action": "save_device",
    "device": {
        "name": "bedroom lamp",
        "formalName": "bedroom light",
        "type": "light",
        "commandExamples": ["Hey Google, turn on bedroom light"],
    },
}) + "\n```\nWould you like to add another device?"


class TestDeviceChat:

    @pytest.mark.asyncio
    async def test_conversational_turn_saves_nothing(self, client, service):
        store, llm, _ = service
        llm.reply = "What do you call this device when you talk to Alexa?"

        response = await client.post("/devices/chat", json={"message": "I want to add a lamp"}, headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data == {"response": "What do you call this device when you talk to Alexa?", "deviceSaved": False}
        assert store.get_user_devices("user-1") == []

    @pytest.mark.asyncio
    async def test_complete_device_is_saved(self, client, service):
        store, llm, _ = service
        await client.put("/config", json={"platform": "google"}, headers=USER)
        llm.reply = SAVE_LAMP_REPLY

        response = await client.post(
            "/devices/chat",
            json={
                "message": "I say bedroom light",
                "conversationHistory": [
                    {"role": "user", "content": "I want to add my bedroom lamp"},
                    {"role": "assistant", "content": "What do you call it?"},
                ],
            },
            headers=USER,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["deviceSaved"] is True
        assert data["device"]["formalName"] == "bedroom light"
        assert data["device"]["platform"] == "google"

        devices = store.get_user_devices("user-1")
        assert [d.name for d in devices] == ["bedroom lamp"]
        assert devices[0].default_prompt

        sent = llm.calls[0]["messages"]
        assert [m.role for m in sent] == ["system", "user", "assistant", "user"]
        assert "Google Assistant" in sent[0].content
        assert llm.calls[0]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, client):
        response = await client.post("/devices/chat", json={"message": ""}, headers=USER)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_backend_failure(self, client, service):
        _, llm, _ = service
        llm.fail_for = {"unknown"}

        response = await client.post("/devices/chat", json={"message": "hello"}, headers=USER)

        assert response.status_code == 502
        assert "Device setup agent failed" in response.json()["detail"]
