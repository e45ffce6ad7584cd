"""Tests for the HTTP API (plugins, messaging, health)."""

import pytest
from fastapi.testclient import TestClient

from app import create_app
from blacktop.constants import BUNDLED_PLUGINS_DIR
from blacktop.dependencies import ServiceContainer
from blacktop.plugins.config import PluginManagerConfig
from blacktop.services.storage_service import InMemoryKeyValueStore
from plugin_helpers import write_plugin

ROUTER_PLUGIN_SOURCE = '''
from fastapi import APIRouter


class SamplePlugin:
    id = "dispatch"
    name = "Dispatch"
    version = "1.0.0"
    description = "Crew dispatch board"
    author = "tests"

    def initialize(self, context):
        router = APIRouter()

        @router.get("/ping")
        async def ping():
            return {"pong": True}

        context.register_router(router)

    def enable(self):
        pass

    def disable(self):
        pass

    def destroy(self):
        pass
'''


@pytest.fixture
def services(plugin_dirs, tmp_path):
    installed, bundled = plugin_dirs
    config = PluginManagerConfig(plugin_directory=installed, bundled_directory=bundled)
    return ServiceContainer.build(
        config=config,
        config_file=tmp_path / "config.json",
        storage=InMemoryKeyValueStore(),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


class TestHealth:
    """Tests for health and fallback routes."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_unknown_route_uses_envelope(self, client):
        response = client.get("/api/nowhere")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert "timestamp" in body


class TestPluginEndpoints:
    """Tests for /api/plugins."""

    def test_list_plugins(self, client):
        body = client.get("/api/plugins").json()

        assert body["success"] is True
        assert body["data"] == {"installed": [], "loaded": [], "registry": []}

    def test_search_requires_query(self, client):
        response = client.get("/api/plugins/search")

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_search_rejects_unknown_type(self, client):
        response = client.get("/api/plugins/search", params={"q": "x", "type": "spaceship"})

        assert response.status_code == 400

    def test_stats(self, client):
        body = client.get("/api/plugins/stats").json()

        assert body["data"]["totalInstalled"] == 0
        assert "memoryUsage" in body["data"]

    def test_unknown_plugin_info(self, client):
        response = client.get("/api/plugins/missing")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_install_load_and_mount_routes(self, client, plugin_source_dir):
        source = write_plugin(plugin_source_dir, "dispatch", source=ROUTER_PLUGIN_SOURCE)

        response = client.post("/api/plugins/dispatch/install", json={"source": str(source)})
        assert response.status_code == 200
        assert response.json()["data"]["installed"] is True

        assert client.post("/api/plugins/dispatch/load").status_code == 200
        assert client.get("/api/plugin/dispatch/ping").json() == {"pong": True}

        info = client.get("/api/plugins/dispatch").json()["data"]
        assert info["isLoaded"] is True
        assert info["info"]["name"] == "Dispatch"
        assert info["metadata"]["id"] == "dispatch"

        assert client.post("/api/plugins/dispatch/enable").status_code == 200
        assert client.post("/api/plugins/dispatch/disable").status_code == 200

        assert client.post("/api/plugins/dispatch/unload").status_code == 200
        assert client.get("/api/plugin/dispatch/ping").status_code == 404

    def test_double_load_is_rejected(self, client, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")

        assert client.post("/api/plugins/fleet/load").status_code == 200
        response = client.post("/api/plugins/fleet/load")

        assert response.status_code == 400
        assert "already loaded" in response.json()["error"]

    def test_unload_not_loaded(self, client, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")

        response = client.post("/api/plugins/fleet/unload")

        assert response.status_code == 400
        assert "not loaded" in response.json()["error"]

    def test_load_unknown_plugin(self, client):
        """Unknown ids outside the info endpoint are caller errors."""
        response = client.post("/api/plugins/missing/load")

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_uninstall_unknown_plugin(self, client):
        response = client.delete("/api/plugins/missing")

        assert response.status_code == 400
        assert "not installed" in response.json()["error"]

    def test_malformed_install_body(self, client):
        response = client.post("/api/plugins/fleet/install", json={"version": 5})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_config_update_for_unknown_plugin(self, client):
        response = client.put("/api/plugins/missing/config", json={"config": {"a": 1}})

        assert response.status_code == 400

    def test_failed_install(self, client, plugin_source_dir):
        empty = plugin_source_dir / "empty"
        empty.mkdir()

        response = client.post("/api/plugins/empty/install", json={"source": str(empty)})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_uninstall(self, client, services, plugin_source_dir):
        source = write_plugin(plugin_source_dir, "fleet")
        client.post("/api/plugins/fleet/install", json={"source": str(source), "version": "1.0.0"})

        response = client.delete("/api/plugins/fleet")

        assert response.status_code == 200
        assert services.manager.get_installed_plugins() == []

    def test_discovered_on_startup(self, plugin_dirs, services):
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")
        services.config_service.enable("fleet")

        with TestClient(create_app(services)) as client:
            body = client.get("/api/plugins").json()

        assert body["data"]["installed"] == ["fleet"]
        assert body["data"]["loaded"] == ["fleet"]


class TestMessagingEndpoints:
    """Tests for /api/messaging."""

    def test_publish_and_read_history(self, client):
        response = client.post("/api/messaging/publish/fleet.position", json={"message": {"vehicleId": "t1"}})
        assert response.status_code == 200

        history = client.get("/api/messaging/history/fleet.position").json()["data"]
        assert history[0]["vehicleId"] == "t1"
        assert history[0]["_topic"] == "fleet.position"

    def test_topics_and_stats(self, client, services):
        services.messaging.subscribe("alerts", lambda m: None)

        topics = client.get("/api/messaging/topics").json()["data"]
        stats = client.get("/api/messaging/stats").json()["data"]

        assert topics["topics"] == ["alerts"]
        assert stats["totalSubscriptions"] == 1


class TestBundledFleetTracker:
    """The shipped fleet-tracker plugin, driven through HTTP and the messaging bus."""

    def test_positions_recorded_from_messages(self, tmp_path):
        config = PluginManagerConfig(plugin_directory=tmp_path / "installed", bundled_directory=BUNDLED_PLUGINS_DIR)
        services = ServiceContainer.build(
            config=config, config_file=tmp_path / "config.json", storage=InMemoryKeyValueStore()
        )

        with TestClient(create_app(services)) as client:
            assert client.post("/api/plugins/fleet-tracker/load").status_code == 200
            assert client.post("/api/plugins/fleet-tracker/enable").status_code == 200

            client.post(
                "/api/messaging/publish/fleet.position",
                json={"message": {"vehicleId": "paver-7", "lat": 36.6, "lng": -79.4}},
            )

            position = client.get("/api/plugin/fleet-tracker/positions/paver-7").json()
            assert position["lat"] == 36.6
            assert client.get("/api/plugin/fleet-tracker/positions/unknown").status_code == 404

            client.post("/api/plugins/fleet-tracker/disable")
            assert services.messaging.get_subscriber_count("fleet.position") == 0
