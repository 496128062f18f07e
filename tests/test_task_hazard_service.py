import asyncio
import json
import re

import pytest

from app.api.task_hazards import TaskHazardApi
from app.core.errors import (
    ApiError,
    AuthExpiredError,
    NotFoundError,
    OfflineDataUnavailableError,
    SessionRequiredError,
)
from app.mappers.base import PLACEHOLDER_RISK_DESCRIPTION
from app.schemas.sync import DataSource
from app.services.event_bus import EventType
from app.services.entity_service import generate_temp_id, is_temp_id
from app.services.task_hazard_service import TaskHazardService

TEMP_ID = re.compile(r"^temp_\d+_[a-z0-9]+$")

LISTING = [
    {
        "_id": "th1",
        "scopeOfWork": "Pump inspection",
        "location": "Site A",
        "supervisor": "sup@example.com",
        "risks": [{"riskDescription": "Slip"}],
        "status": "Pending",
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-02T00:00:00Z",
    },
    {
        "_id": "th2",
        "scopeOfWork": "Valve swap",
        "location": "Site B",
        "createdAt": "2024-01-03T00:00:00Z",
        "updatedAt": "2024-01-03T00:00:00Z",
    },
]


@pytest.fixture(name="service")
def service_fixture(make_service):
    return make_service(TaskHazardService, TaskHazardApi)


async def seed(service: TaskHazardService, records=LISTING):
    await service.cache_records(records, clear_existing=True)


class TestTempIds:
    def test_format(self):
        temp_id = generate_temp_id()

        assert TEMP_ID.match(temp_id)
        assert len(temp_id.rsplit("_", 1)[1]) == 9
        assert is_temp_id(temp_id)
        assert not is_temp_id("665f1c2e9b1d")


class TestReads:
    @pytest.mark.asyncio
    async def test_get_all_caches_listing(self, service, fake_api, store):
        fake_api.route("GET", "/api/task-hazards", body={"data": LISTING})

        result = await service.get_all()

        assert result.source == DataSource.API
        assert [r["_id"] for r in result.data] == ["th1", "th2"]
        assert await store.count("task_hazards") == 2

    @pytest.mark.asyncio
    async def test_refresh_is_idempotent(self, service, store):
        await service.cache_records(LISTING, clear_existing=True)
        once = await store.get_all("task_hazards", order_by="id")

        await service.cache_records(LISTING, clear_existing=True)
        twice = await store.get_all("task_hazards", order_by="id")

        assert once == twice

    @pytest.mark.asyncio
    async def test_refresh_keeps_stamps_the_server_left_out(self, service, store):
        listing = [*LISTING, {"_id": "th3", "scopeOfWork": "Undated"}]
        await service.cache_records(listing, clear_existing=True)
        await store.execute_query("UPDATE task_hazards SET created_at = ?, updated_at = ? WHERE id = ?", [100, 100, "th3"])
        once = await store.get_all("task_hazards", order_by="id")

        await service.cache_records(listing, clear_existing=True)
        twice = await store.get_all("task_hazards", order_by="id")

        assert once == twice
        th3 = await store.get_by_id("task_hazards", "th3")
        assert th3["created_at"] == 100
        assert th3["updated_at"] == 100
        assert th3["date"] == ""

    @pytest.mark.asyncio
    async def test_unfiltered_refresh_replaces_table(self, service, fake_api, store):
        await seed(service)
        fake_api.route("GET", "/api/task-hazards", body={"data": [LISTING[1]]})

        await service.get_all()

        assert [row["id"] for row in await store.get_all("task_hazards")] == ["th2"]

    @pytest.mark.asyncio
    async def test_filtered_listing_is_additive(self, service, fake_api, store):
        await seed(service)
        fake_api.route("GET", "/api/task-hazards", body={"data": [{"_id": "th3", "scopeOfWork": "New"}]})

        await service.get_all({"status": "draft"})

        assert await store.count("task_hazards") == 3
        assert fake_api.calls[0]["params"] == {"status": "draft"}

    @pytest.mark.asyncio
    async def test_refresh_keeps_unsynced_local_changes(self, service, fake_api, store, monitor):
        await seed(service)
        monitor.set_online(False)
        await service.update("th1", {"location": "Moved"})
        monitor.set_online(True)
        fake_api.route("GET", "/api/task-hazards", body={"data": LISTING})

        result = await service.get_all()

        row = await store.get_by_id("task_hazards", "th1")
        assert row["location"] == "Moved"
        assert row["synced"] == 0
        th1 = next(r for r in result.data if r["id"] == "th1")
        assert th1["location"] == "Moved"
        assert th1["_pendingSync"] is True

    @pytest.mark.asyncio
    async def test_falls_back_to_cache_on_network_error(self, service, fake_api, connect_error):
        await seed(service)
        fake_api.fail("GET", "/api/task-hazards", connect_error)

        result = await service.get_all()

        assert result.source == DataSource.CACHE
        assert result.offline is True
        assert {r["id"] for r in result.data} == {"th1", "th2"}

    @pytest.mark.asyncio
    async def test_falls_back_to_cache_on_server_error(self, service, fake_api):
        await seed(service)
        fake_api.route("GET", "/api/task-hazards", status=500, body={"message": "boom"})

        result = await service.get_all()

        assert result.source == DataSource.CACHE

    @pytest.mark.asyncio
    async def test_auth_expiry_never_served_from_cache(self, service, fake_api, token_expired, session):
        await seed(service)
        fake_api.fail("GET", "/api/task-hazards", token_expired)

        with pytest.raises(AuthExpiredError):
            await service.get_all()

        assert not session.is_authenticated()

    @pytest.mark.asyncio
    async def test_offline_with_empty_cache_asks_to_connect(self, service, fake_api, monitor):
        monitor.set_online(False)

        with pytest.raises(OfflineDataUnavailableError) as exc_info:
            await service.get_all()

        assert "connect to the internet" in exc_info.value.message
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_cache_excludes_tombstones(self, service, store, monitor):
        await seed(service)
        monitor.set_online(False)
        await service.delete("th1")

        result = await service.get_all()

        assert [r["id"] for r in result.data] == ["th2"]

    @pytest.mark.asyncio
    async def test_get_one_from_cache(self, service, fake_api, connect_error):
        await seed(service)
        fake_api.fail("GET", "/api/task-hazards/th1", connect_error)

        result = await service.get_one("th1")

        assert result.source == DataSource.CACHE
        assert result.data["scopeOfWork"] == "Pump inspection"

    @pytest.mark.asyncio
    async def test_get_one_online_shows_unsynced_edit(self, service, fake_api, monitor):
        await seed(service)
        monitor.set_online(False)
        await service.update("th1", {"location": "Moved"})
        monitor.set_online(True)
        fake_api.route("GET", "/api/task-hazards/th1", body={"data": LISTING[0]})

        result = await service.get_one("th1")

        assert result.source == DataSource.API
        assert result.data["location"] == "Moved"
        assert result.data["_pendingSync"] is True

    @pytest.mark.asyncio
    async def test_get_one_online_hides_pending_delete(self, service, fake_api, monitor):
        await seed(service)
        monitor.set_online(False)
        await service.delete("th1")
        monitor.set_online(True)
        fake_api.route("GET", "/api/task-hazards/th1", body={"data": LISTING[0]})

        with pytest.raises(OfflineDataUnavailableError):
            await service.get_one("th1")

    @pytest.mark.asyncio
    async def test_get_one_cache_miss(self, service, monitor):
        monitor.set_online(False)

        with pytest.raises(OfflineDataUnavailableError) as exc_info:
            await service.get_one("nope")

        assert exc_info.value.message == "Task hazard not found"


class TestMutations:
    @pytest.mark.asyncio
    async def test_online_create_writes_through(self, service, fake_api, store):
        fake_api.route("POST", "/api/task-hazards", body={"data": {"_id": "srv1", "scopeOfWork": "Pump inspection"}})

        result = await service.create({"scopeOfWork": "Pump inspection"})

        assert result.source == DataSource.API
        row = await store.get_by_id("task_hazards", "srv1")
        assert row["synced"] == 1
        assert await store.count_pending() == 0

    @pytest.mark.asyncio
    async def test_network_error_on_create_saves_offline(self, service, fake_api, store, connect_error):
        fake_api.fail("POST", "/api/task-hazards", connect_error)

        result = await service.create({"scopeOfWork": "Pump inspection"})

        assert result.offline is True
        assert result.pending_sync is True
        assert TEMP_ID.match(result.data["id"])
        assert await store.count_pending("task_hazard") == 1

    @pytest.mark.asyncio
    async def test_validation_error_on_create_is_raised(self, service, fake_api, store):
        fake_api.route("POST", "/api/task-hazards", status=422, body={"message": "Scope is required"})

        with pytest.raises(ApiError) as exc_info:
            await service.create({})

        assert exc_info.value.message == "Scope is required"
        assert await store.count("task_hazards") == 0
        assert await store.count_pending() == 0

    @pytest.mark.asyncio
    async def test_mutations_require_session(self, service, fake_api, store, session):
        session.clear()

        with pytest.raises(SessionRequiredError):
            await service.create({"scopeOfWork": "x"})
        with pytest.raises(SessionRequiredError):
            await service.update("th1", {"location": "x"})
        with pytest.raises(SessionRequiredError):
            await service.delete("th1")

        assert fake_api.calls == []
        assert await store.count("task_hazards") == 0

    @pytest.mark.asyncio
    async def test_online_update_with_expired_auth_does_not_write_locally(self, service, fake_api, store, token_expired):
        await seed(service)
        fake_api.fail("PUT", "/api/task-hazards/th1", token_expired)

        with pytest.raises(AuthExpiredError):
            await service.update("th1", {"location": "Elsewhere"})

        row = await store.get_by_id("task_hazards", "th1")
        assert row["synced"] == 1
        assert row["location"] == "Site A"
        assert await store.count_pending() == 0

    @pytest.mark.asyncio
    async def test_repeated_offline_updates_leave_one_entry(self, service, store, monitor):
        await seed(service)
        monitor.set_online(False)

        for location in ("A", "B", "C", "D"):
            await service.update("th1", {"location": location})

        entries = await store.get_pending_sync_items("task_hazard")
        assert len(entries) == 1
        assert entries[0]["operation"] == "update"
        assert json.loads(entries[0]["data"]) == {"location": "D"}

        row = await store.get_by_id("task_hazards", "th1")
        assert row["location"] == "D"
        assert row["synced"] == 0
        assert json.loads(row["metadata"])["scopeOfWork"] == "Pump inspection"

    @pytest.mark.asyncio
    async def test_offline_update_of_uncached_record(self, service, monitor):
        monitor.set_online(False)

        with pytest.raises(NotFoundError):
            await service.update("ghost", {"location": "x"})

    @pytest.mark.asyncio
    async def test_editing_temp_record_keeps_create(self, service, store, fake_api):
        created = await self._create_offline(service, store)

        await service.update(created, {"location": "Dock 4"})

        entry = await store.get_queue_entry("task_hazard", created)
        assert entry["operation"] == "create"
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_deleting_temp_record_is_local_only(self, service, store, fake_api, monitor):
        for online in (False, True):
            monitor.set_online(online)
            temp_id = await self._create_offline(service, store)
            fake_api.calls.clear()

            result = await service.delete(temp_id)

            assert result.data["deleted"] is True
            assert fake_api.calls == []
            assert await store.get_by_id("task_hazards", temp_id) is None
            assert await store.get_queue_entry("task_hazard", temp_id) is None

    @pytest.mark.asyncio
    async def test_offline_delete_tombstones(self, service, store, monitor):
        await seed(service)
        monitor.set_online(False)

        result = await service.delete("th1")

        assert result.pending_sync is True
        row = await store.get_by_id("task_hazards", "th1")
        assert row["status"] == "deleted"
        assert row["synced"] == 0
        assert (await store.get_queue_entry("task_hazard", "th1"))["operation"] == "delete"

    @pytest.mark.asyncio
    async def test_online_delete(self, service, store, fake_api):
        await seed(service)
        fake_api.route("DELETE", "/api/task-hazards/th1", status=204)

        await service.delete("th1")

        assert await store.get_by_id("task_hazards", "th1") is None

    @staticmethod
    async def _create_offline(service, store):
        online = service.monitor.is_online()
        service.monitor.set_online(False)
        result = await service.create({"scopeOfWork": "Pump inspection", "risks": []})
        service.monitor.set_online(online)
        return result.data["id"]


class TestSyncPending:
    @pytest.mark.asyncio
    async def test_offline_create_then_sync(self, service, store, fake_api, monitor):
        monitor.set_online(False)
        result = await service.create({"scopeOfWork": "Pump inspection", "supervisor": "sup@example.com", "risks": []})
        temp_id = result.data["id"]

        assert TEMP_ID.match(temp_id)
        row = await store.get_by_id("task_hazards", temp_id)
        assert row["synced"] == 0
        assert (await store.get_queue_entry("task_hazard", temp_id))["operation"] == "create"

        fake_api.route("POST", "/api/task-hazards", body={"data": {"_id": "srv1", "scopeOfWork": "Pump inspection"}})
        monitor.set_online(True)

        sync = await service.sync_pending()

        assert sync.synced == 1
        assert sync.pending == 0
        sent = fake_api.calls_to("POST", "/api/task-hazards")[0]["json"]
        assert sent["scopeOfWork"] == "Pump inspection"
        assert len(sent["risks"]) == 1
        assert sent["risks"][0]["riskDescription"] == PLACEHOLDER_RISK_DESCRIPTION
        assert "_offline" not in sent and "id" not in sent

        assert await store.get_by_id("task_hazards", temp_id) is None
        assert await store.get_queue_entry("task_hazard", temp_id) is None
        server_row = await store.get_by_id("task_hazards", "srv1")
        assert server_row["synced"] == 1
        assert await store.count("task_hazards") == 1

    @pytest.mark.asyncio
    async def test_many_offline_creates_each_get_one_server_row(self, service, store, fake_api, monitor):
        monitor.set_online(False)
        for name in ("A", "B", "C"):
            await service.create({"scopeOfWork": name})

        counter = iter(range(1, 100))

        def create_handler(request, match):
            body = json.loads(request.content)
            return 201, {"data": {"_id": f"srv{next(counter)}", **body}}

        fake_api.route("POST", "/api/task-hazards", create_handler)
        monitor.set_online(True)

        result = await service.sync_pending()

        assert result.synced == 3
        ids = {row["id"] for row in await store.get_all("task_hazards")}
        assert ids == {"srv1", "srv2", "srv3"}
        assert not any(is_temp_id(i) for i in ids)
        assert await store.count_pending() == 0

    @pytest.mark.asyncio
    async def test_sync_update_and_delete(self, service, store, fake_api, monitor):
        await seed(service)
        monitor.set_online(False)
        await service.update("th1", {"location": "Moved"})
        await service.delete("th2")
        monitor.set_online(True)

        fake_api.route("PUT", "/api/task-hazards/th1", body={"data": {**LISTING[0], "location": "Moved"}})
        fake_api.route("DELETE", "/api/task-hazards/th2", status=204)

        result = await service.sync_pending()

        assert result.synced == 2
        assert (await store.get_by_id("task_hazards", "th1"))["synced"] == 1
        assert await store.get_by_id("task_hazards", "th2") is None
        assert fake_api.calls_to("PUT")[0]["json"]["location"] == "Moved"

    @pytest.mark.asyncio
    async def test_delete_of_already_removed_record_succeeds(self, service, store, fake_api, monitor):
        await seed(service)
        monitor.set_online(False)
        await service.delete("th1")
        monitor.set_online(True)
        fake_api.route("DELETE", "/api/task-hazards/th1", status=404, body={"message": "Task hazard not found"})

        result = await service.sync_pending()

        assert result.synced == 1
        assert await store.get_by_id("task_hazards", "th1") is None
        assert await store.count_pending() == 0

    @pytest.mark.asyncio
    async def test_network_failure_reverts_and_keeps_entry(self, service, store, fake_api, monitor, connect_error):
        monitor.set_online(False)
        temp_id = (await service.create({"scopeOfWork": "x"})).data["id"]
        monitor.set_online(True)
        fake_api.fail("POST", "/api/task-hazards", connect_error)

        result = await service.sync_pending()

        assert result.synced == 0
        assert result.failed == 0
        assert result.pending == 1
        assert (await store.get_by_id("task_hazards", temp_id))["synced"] == 0
        assert (await store.get_queue_entry("task_hazard", temp_id))["retry_count"] == 0

    @pytest.mark.asyncio
    async def test_server_failure_counts_retries_until_dropped(self, make_service, store, fake_api, monitor):
        service = make_service(TaskHazardService, TaskHazardApi, max_retries=3)
        monitor.set_online(False)
        temp_id = (await service.create({"scopeOfWork": "x"})).data["id"]
        monitor.set_online(True)
        fake_api.route("POST", "/api/task-hazards", status=500, body={"message": "boom"})

        for attempt in (1, 2):
            result = await service.sync_pending()
            assert result.failed == 1
            assert (await store.get_queue_entry("task_hazard", temp_id))["retry_count"] == attempt
            assert (await store.get_by_id("task_hazards", temp_id))["synced"] == 0

        result = await service.sync_pending()

        assert result.failed == 1
        assert result.pending == 0
        assert await store.get_queue_entry("task_hazard", temp_id) is None

    @pytest.mark.asyncio
    async def test_dropped_update_hands_row_back_to_server(self, make_service, store, fake_api, monitor):
        service = make_service(TaskHazardService, TaskHazardApi, max_retries=1)
        await seed(service)
        monitor.set_online(False)
        await service.update("th1", {"location": "Moved"})
        monitor.set_online(True)
        fake_api.route("PUT", "/api/task-hazards/th1", status=422, body={"message": "Location is locked"})

        result = await service.sync_pending()

        assert result.failed == 1
        assert await store.get_queue_entry("task_hazard", "th1") is None
        assert (await store.get_by_id("task_hazards", "th1"))["synced"] == 1

        fake_api.route("GET", "/api/task-hazards", body={"data": [{**LISTING[0], "location": "ServerLoc"}, LISTING[1]]})
        listing = await service.get_all()

        th1 = next(r for r in listing.data if r["id"] == "th1")
        assert th1["location"] == "ServerLoc"
        assert "_pendingSync" not in th1
        assert (await store.get_by_id("task_hazards", "th1"))["location"] == "ServerLoc"

    @pytest.mark.asyncio
    async def test_dropped_create_removes_temp_row(self, make_service, store, fake_api, monitor):
        service = make_service(TaskHazardService, TaskHazardApi, max_retries=1)
        monitor.set_online(False)
        temp_id = (await service.create({"scopeOfWork": "x"})).data["id"]
        monitor.set_online(True)
        fake_api.route("POST", "/api/task-hazards", status=422, body={"message": "Scope is required"})

        await service.sync_pending()

        assert await store.get_by_id("task_hazards", temp_id) is None
        assert await store.count_pending() == 0

    @pytest.mark.asyncio
    async def test_dropped_delete_restores_status(self, make_service, store, fake_api, monitor):
        service = make_service(TaskHazardService, TaskHazardApi, max_retries=1)
        await seed(service)
        monitor.set_online(False)
        await service.delete("th1")
        monitor.set_online(True)
        fake_api.route("DELETE", "/api/task-hazards/th1", status=409, body={"message": "Awaiting approval"})

        await service.sync_pending()

        row = await store.get_by_id("task_hazards", "th1")
        assert row["status"] == "Pending"
        assert row["synced"] == 1
        assert "th1" in [r["id"] for r in await service.get_cached()]

    @pytest.mark.asyncio
    async def test_edit_during_create_moves_to_server_id(self, service, store, fake_api, monitor):
        monitor.set_online(False)
        temp_id = (await service.create({"scopeOfWork": "First"})).data["id"]
        monitor.set_online(True)
        fake_api.route("POST", "/api/task-hazards", body={"data": {"_id": "srv1", "scopeOfWork": "First"}})
        create = service.api.create

        async def create_while_editing(payload):
            await service.update(temp_id, {"scopeOfWork": "Edited"})
            return await create(payload)

        service.api.create = create_while_editing

        result = await service.sync_pending()

        assert result.synced == 1
        assert result.pending == 1
        assert await store.get_by_id("task_hazards", temp_id) is None
        row = await store.get_by_id("task_hazards", "srv1")
        assert row["task_name"] == "Edited"
        assert row["synced"] == 0
        assert (await store.get_queue_entry("task_hazard", "srv1"))["operation"] == "update"

        service.api.create = create
        fake_api.route("PUT", "/api/task-hazards/srv1", body={"data": {"_id": "srv1", "scopeOfWork": "Edited"}})
        await service.sync_pending()

        assert fake_api.calls_to("PUT")[0]["json"]["scopeOfWork"] == "Edited"
        assert (await store.get_by_id("task_hazards", "srv1"))["synced"] == 1
        assert await store.count_pending() == 0

    @pytest.mark.asyncio
    async def test_auth_expiry_during_sync_reverts_and_raises(self, service, store, fake_api, monitor, token_expired):
        monitor.set_online(False)
        temp_id = (await service.create({"scopeOfWork": "x"})).data["id"]
        monitor.set_online(True)
        fake_api.fail("POST", "/api/task-hazards", token_expired)

        with pytest.raises(AuthExpiredError):
            await service.sync_pending()

        assert not service.is_syncing
        assert (await store.get_by_id("task_hazards", temp_id))["synced"] == 0
        assert await store.get_queue_entry("task_hazard", temp_id) is not None

    @pytest.mark.asyncio
    async def test_concurrent_passes_do_not_overlap(self, service, store, fake_api, monitor):
        monitor.set_online(False)
        await service.create({"scopeOfWork": "x"})
        monitor.set_online(True)

        calls = []

        def create_handler(request, match):
            calls.append(request)
            return 201, {"data": {"_id": "srv1", "scopeOfWork": "x"}}

        fake_api.route("POST", "/api/task-hazards", create_handler)

        first = asyncio.create_task(service.sync_pending())
        await asyncio.sleep(0)
        assert service.is_syncing

        second = await service.sync_pending()

        assert second.synced == 0
        assert second.message == "Sync already in progress"

        first_result = await first
        assert first_result.synced == 1
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_debounce_window(self, make_service, store, monitor):
        service = make_service(TaskHazardService, TaskHazardApi, sync_debounce=60)

        await service.sync_pending()
        skipped = await service.sync_pending()
        forced = await service.sync_pending(force=True)

        assert skipped.message == "Sync skipped - last sync was too recent"
        assert forced.message.startswith("Synced 0")

    @pytest.mark.asyncio
    async def test_offline_sync_is_a_no_op(self, service, fake_api, monitor):
        monitor.set_online(False)

        result = await service.sync_pending()

        assert result.offline is True
        assert result.message == "Offline - sync will happen when online"
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_queue_entry_for_vanished_row_is_discarded(self, service, store, fake_api):
        await store.enqueue("task_hazard", "gone", "update", {"location": "x"})

        result = await service.sync_pending()

        assert result.synced == 0
        assert await store.count_pending() == 0
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_check_and_sync(self, service, store, fake_api, monitor):
        assert (await service.check_and_sync()).message == "No pending items to sync"

        monitor.set_online(False)
        await service.create({"scopeOfWork": "x"})
        assert (await service.check_and_sync()).offline is True

        monitor.set_online(True)
        fake_api.route("POST", "/api/task-hazards", body={"data": {"_id": "srv1"}})
        result = await service.check_and_sync()

        assert result.synced == 1
        assert await service.get_pending_count() == 0

    @pytest.mark.asyncio
    async def test_publishes_sync_completed(self, service, event_bus):
        events = []
        event_bus.subscribe(EventType.SYNC_COMPLETED, events.append)

        await service.sync_pending()

        assert events[0]["data"]["entity_type"] == "task_hazard"


class TestCacheUtilities:
    @pytest.mark.asyncio
    async def test_cache_info_and_clear(self, service):
        assert not await service.has_cached_data()

        await seed(service)

        assert await service.has_cached_data()
        info = await service.get_cache_info()
        assert info["count"] == 2
        assert info["last_update"] == 1704240000

        await service.clear_cache()
        assert (await service.get_cache_info())["count"] == 0
