# app/services/approval_service.py
"""
Supervisor approval requests.

Approval requests are task hazards awaiting a decision. They are cached
additively (a refresh never wipes decisions the server has not seen yet), and
decisions made offline are queued as ``process`` entries.
"""
import logging
from typing import Any, Dict, Optional

from app.core.errors import ApiError, SyncError, is_auth_error
from app.mappers.approval import ApprovalMapper
from app.mappers.base import loads, to_iso
from app.models.sync import EntityType, SyncOperation
from app.schemas.sync import DataSource, ServiceResult
from app.services.entity_service import SyncingEntityService, as_list, unwrap

logger = logging.getLogger(__name__)


class ApprovalService(SyncingEntityService):
    mapper = ApprovalMapper()
    entity_type = EntityType.APPROVAL
    tombstone_column = None

    async def get_approvals(self, params: Optional[Dict[str, Any]] = None) -> ServiceResult:
        """
        Fetch approval requests, remote first.

        Raises:
            AuthExpiredError: never answered from the cache
            OfflineDataUnavailableError: remote failed and nothing is cached
        """
        await self._ready()

        if self.is_online():
            try:
                response = unwrap(await self.api.get_approvals(params))
            except SyncError as e:
                if is_auth_error(e):
                    raise
                logger.warning(f"Approval API failed, loading from cache: {e.message}")
            else:
                records = as_list(response.get("taskHazards") if isinstance(response, dict) else response)
                await self.cache_records(records)
                return ServiceResult(data=await self._with_local_changes(records), source=DataSource.API)

        cached = await self.get_cached()
        if not cached:
            raise self._unavailable()
        return ServiceResult(data=cached, source=DataSource.CACHE, offline=True)

    # Approvals are only ever listed through the approval queue endpoint
    get_all = get_approvals

    async def process_approval(self, task_hazard_id: str, decision: Dict[str, Any]) -> ServiceResult:
        """
        Approve or reject a task hazard.

        Online, the decision goes straight to the server. Offline, or when the
        server call fails for any reason other than an expired session, the
        decision is stored on the cached request and queued.

        Args:
            task_hazard_id: Id of the task hazard being decided
            decision: ``{"status": "Approved" | "Rejected", "comments": ..., ...}``
        """
        await self._ready()
        self._require_session()

        if self.is_online():
            try:
                response = await self.api.process_approval(task_hazard_id, decision)
            except SyncError as e:
                if is_auth_error(e):
                    raise
                logger.warning(f"Approval API failed for {task_hazard_id}, saving offline: {e.message}")
            else:
                await self._update_cached_decision(task_hazard_id, decision, synced=1)
                await self.store.remove_queue_entries(self.entity_type, task_hazard_id)
                logger.info(f"Approval for {task_hazard_id} processed on server")
                return ServiceResult(data=unwrap(response), source=DataSource.API)

        cached = await self.store.get_by_id(self.table, task_hazard_id)
        if cached is None:
            raise ApiError(
                "Approval request not found in cache. Please refresh and try again.", 404, "NOT_CACHED"
            )

        await self.store.update(self.table, task_hazard_id, self.mapper.approval_update_row(decision, synced=0))
        await self.store.enqueue(self.entity_type, task_hazard_id, SyncOperation.PROCESS, decision)
        logger.info(f"Approval for {task_hazard_id} saved offline")

        return ServiceResult(
            data={"id": task_hazard_id, **decision, "_pendingSync": True},
            source=DataSource.OFFLINE,
            offline=True,
            pending_sync=True,
        )

    async def _update_cached_decision(self, task_hazard_id: str, decision: Dict[str, Any], synced: int):
        if await self.store.get_by_id(self.table, task_hazard_id) is None:
            return
        await self.store.update(self.table, task_hazard_id, self.mapper.approval_update_row(decision, synced))

    # ===========================
    # Queue replay
    # ===========================

    def _requires_row(self, operation: str) -> bool:
        # The queued decision carries everything needed to replay it
        return False

    async def _push(self, operation: str, entity_id: str, payload: Dict[str, Any], data: Dict[str, Any]) -> Any:
        if operation != SyncOperation.PROCESS.value:
            raise ValueError(f"Unsupported sync operation for approvals: {operation}")
        return unwrap(await self.api.process_approval(entity_id, data))

    async def _commit(self, entry: Dict[str, Any], row: Optional[Dict[str, Any]], response: Any, data: Dict[str, Any]):
        await self.store.remove_from_sync_queue(entry["id"])
        if row is not None:
            await self.store.update(self.table, row["id"], {"synced": 1})
        logger.info(f"Synced approval for {entry['entity_id']}")

    # ===========================
    # Diagnostics
    # ===========================

    async def get_debug_info(self) -> Dict[str, Any]:
        """Queue and cache state of the approval flow."""
        await self._ready()

        queue_items = await self.store.select_query(
            "SELECT * FROM sync_queue WHERE entity_type = ? ORDER BY created_at, id", [self.entity_type.value]
        )
        cached = await self.store.select_query(
            "SELECT id, task_hazard_id, approval_status, synced, created_at FROM approvals"
        )

        return {
            "network_status": {"is_online": self.is_online()},
            "is_syncing": self.is_syncing,
            "sync_queue": {
                "count": len(queue_items),
                "items": [
                    {
                        "id": item["id"],
                        "task_hazard_id": item["entity_id"],
                        "operation": item["operation"],
                        "retry_count": item["retry_count"],
                        "created_at": to_iso(item["created_at"]),
                        "data": loads(item["data"], {}, item["entity_id"]),
                    }
                    for item in queue_items
                ],
            },
            "cached_approvals": {
                "total": len(cached),
                "synced": sum(1 for a in cached if a["synced"] == 1),
                "unsynced": sum(1 for a in cached if a["synced"] == 0),
                "items": [
                    {
                        "id": a["id"],
                        "task_hazard_id": a["task_hazard_id"],
                        "status": a["approval_status"],
                        "synced": a["synced"] == 1,
                        "created_at": to_iso(a["created_at"]),
                    }
                    for a in cached
                ],
            },
        }
