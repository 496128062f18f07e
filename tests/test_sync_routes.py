import httpx
import pytest

from app.api.assets import AssetHierarchyApi
from app.api.task_hazards import TaskHazardApi
from app.main import app
from app.services.asset_service import AssetHierarchyService
from app.services.sync_service import SyncService, get_sync_service
from app.services.task_hazard_service import TaskHazardService


@pytest.fixture(name="sync_service")
def sync_service_fixture(make_service, store, monitor):
    services = [
        make_service(TaskHazardService, TaskHazardApi),
        make_service(AssetHierarchyService, AssetHierarchyApi),
    ]
    return SyncService(store, services, monitor)


@pytest.fixture(name="http")
async def http_fixture(sync_service: SyncService):
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


async def queue_offline_create(sync_service: SyncService, monitor):
    monitor.set_online(False)
    await sync_service.get_service("task_hazard").create({"scopeOfWork": "Pump inspection"})
    monitor.set_online(True)


class TestSyncStatus:
    @pytest.mark.asyncio
    async def test_status_reports_each_domain(self, http, sync_service, monitor):
        await queue_offline_create(sync_service, monitor)

        response = await http.get("/sync/status")

        assert response.status_code == 200
        data = response.json()
        assert data["is_online"] is True
        assert data["total_pending"] == 1
        domains = {d["entity_type"]: d for d in data["domains"]}
        assert domains["task_hazard"]["pending"] == 1
        assert domains["task_hazard"]["unsynced_rows"] == 1
        assert domains["asset"]["pending"] == 0

    @pytest.mark.asyncio
    async def test_queue_listing(self, http, sync_service, monitor):
        await queue_offline_create(sync_service, monitor)

        response = await http.get("/sync/queue", params={"entity_type": "task_hazard"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["entries"][0]["operation"] == "create"
        assert data["entries"][0]["data"] == {"scopeOfWork": "Pump inspection"}


class TestSyncTriggers:
    @pytest.mark.asyncio
    async def test_run_all(self, http, sync_service, monitor, fake_api):
        await queue_offline_create(sync_service, monitor)
        fake_api.route("POST", "/api/task-hazards", body={"data": {"_id": "srv1"}})

        response = await http.post("/sync/run")

        assert response.status_code == 200
        data = response.json()
        assert data["synced"] == 1
        assert data["pending"] == 0
        assert set(data["results"]) == {"task_hazard", "asset"}

    @pytest.mark.asyncio
    async def test_run_one_domain(self, http):
        response = await http.post("/sync/asset/run")

        assert response.status_code == 200
        assert response.json()["message"] == "Synced 0 assets"

    @pytest.mark.asyncio
    async def test_unknown_domain(self, http):
        response = await http.post("/sync/widgets/run")

        assert response.status_code == 404
        assert "Unknown entity type" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_run_while_offline(self, http, monitor):
        monitor.set_online(False)

        response = await http.post("/sync/task_hazard/run")

        assert response.status_code == 200
        assert response.json()["offline"] is True


class TestRoot:
    @pytest.mark.asyncio
    async def test_health(self, http):
        response = await http.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
