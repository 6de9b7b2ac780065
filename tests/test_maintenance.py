import asyncio
import logging

import pytest
from fastapi.testclient import TestClient

from gallery.api.maintenance import control as control_api
from gallery.core import maintenance as core_maintenance
from gallery.core.image_cache import SweepReport
from gallery.core.log_buffer import clear_log_entries, install_log_buffer
from gallery.dependencies import get_image_cache, get_library, get_post_store, get_rebuilder
from gallery.main import app


class StubCache:
    def sweep(self):
        return SweepReport(expired_entries=2, orphan_files=1)

    def stats(self):
        return {"entries": 0}


class StubLibrary:
    def housekeeping(self, rebuild=True):
        return 3, 1

    def init_scan(self, rebuild=True):
        return None


class StubRebuilder:
    def __init__(self):
        self.triggers = 0

    def trigger(self, wait=False):
        self.triggers += 1
        return True

    def status(self):
        return {"pending": False, "building": False, "builds": 0, "failures": 0, "last_error": None, "last_finished": None}


@pytest.fixture
def rebuilder():
    return StubRebuilder()


@pytest.fixture
def client(store, rebuilder):
    app.dependency_overrides[get_image_cache] = StubCache
    app.dependency_overrides[get_library] = StubLibrary
    app.dependency_overrides[get_rebuilder] = lambda: rebuilder
    app.dependency_overrides[get_post_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_start_and_stop_maintenance_endpoints(client, monkeypatch):
    """Ensure start/stop endpoints toggle the shared maintenance state."""
    events = []

    def fake_start(cache, library=None, *, sweep_interval_seconds, housekeeping_interval_seconds, delay_seconds=None):
        events.append(("start", sweep_interval_seconds, housekeeping_interval_seconds))
        core_maintenance._maintenance_started = True
        return True

    def fake_stop():
        events.append(("stop",))
        core_maintenance._maintenance_started = False

    monkeypatch.setattr(control_api, "start_maintenance_background", fake_start)
    monkeypatch.setattr(control_api, "request_maintenance_stop", fake_stop)
    monkeypatch.setattr(control_api, "maintenance_status", lambda: core_maintenance._maintenance_started)
    monkeypatch.setattr(control_api.settings, "MAINTENANCE_ENABLED", True)

    response = client.post("/maintenance/start")
    assert response.status_code == 200
    assert response.json().get("running") is True

    response = client.post("/maintenance/stop")
    assert response.status_code == 200
    assert response.json() == {"stopped": True}

    settings = control_api.settings
    assert events == [
        ("start", settings.IMAGE_CACHE_SWEEP_INTERVAL_MINUTES * 60, settings.HOUSEKEEPING_INTERVAL_MINUTES * 60),
        ("stop",),
    ]


def test_start_when_disabled(client, monkeypatch):
    monkeypatch.setattr(control_api.settings, "MAINTENANCE_ENABLED", False)
    response = client.post("/maintenance/start")
    assert response.json() == {"enabled": False, "running": False, "message": "Maintenance disabled"}


def test_sweep_housekeeping_and_rebuild(client, rebuilder):
    response = client.post("/maintenance/sweep")
    assert response.status_code == 200
    assert response.json()["expired_entries"] == 2
    assert response.json()["orphan_files"] == 1

    response = client.post("/maintenance/housekeeping")
    assert response.json() == {"removed_records": 3, "removed_posts": 1}

    response = client.post("/maintenance/rebuild")
    assert response.json()["queued"] is True
    assert rebuilder.triggers == 1


def test_logs_endpoint(client):
    install_log_buffer()
    clear_log_entries()
    logging.getLogger("gallery.core.image_cache").warning("[image_cache] disk nearly full")
    logging.getLogger("gallery.services.library").info("[library] scanned")

    items = client.get("/maintenance/logs", params={"scope": "cache"}).json()["items"]
    assert [entry["message"] for entry in items] == ["[image_cache] disk nearly full"]

    items = client.get("/maintenance/logs", params={"scope": "errors"}).json()["items"]
    assert len(items) == 1

    assert client.delete("/maintenance/logs").json() == {"cleared": True}
    assert client.get("/maintenance/logs").json()["items"] == []


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    detailed = client.get("/health/detailed").json()
    assert detailed["status"] == "online"
    assert detailed["services"]["database"]["status"] == "online"


def test_pending_maintenance_tasks_are_cleared():
    """Ensure request_maintenance_stop removes lingering tasks."""
    async def runner():
        core_maintenance._maintenance_tasks.clear()
        core_maintenance._maintenance_started = True
        event = asyncio.Event()
        task = asyncio.create_task(event.wait())
        core_maintenance.register_maintenance_task(task)
        core_maintenance.request_maintenance_stop()
        await asyncio.sleep(0)  # let cancellation propagate
        assert task.cancelled()
        assert not core_maintenance._maintenance_tasks
        core_maintenance._maintenance_started = False

    asyncio.run(runner())


def test_sweep_loop_runs_until_stopped():
    calls = []

    class Cache:
        def sweep(self):
            calls.append(1)
            core_maintenance._stop_requested = True
            return SweepReport()

    async def runner():
        core_maintenance._stop_requested = False
        await asyncio.wait_for(core_maintenance.cache_sweep_loop(Cache(), 0.01), timeout=5)

    try:
        asyncio.run(runner())
    finally:
        core_maintenance._stop_requested = False
    assert calls == [1]
