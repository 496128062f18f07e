# app/services/sync_service.py
"""
Sync coordinator.

Owns the queue-replaying services of every domain and runs them together,
either on demand or through one auto-sync scheduler per domain.
"""
import logging
from typing import Dict, List, Optional

from app.api.assets import AssetHierarchyApi
from app.api.risk_assessments import RiskAssessmentApi
from app.api.task_hazards import TaskHazardApi
from app.api.users import UserApi
from app.core.api_client import ApiClient
from app.core.background_tasks import AutoSyncScheduler
from app.core.config import settings
from app.core.connectivity import ConnectivityMonitor
from app.core.errors import AuthExpiredError
from app.core.session import SessionProvider
from app.database.store import LocalStore
from app.schemas.sync import DomainSyncStatus, SyncAllResponse, SyncResult, SyncStatusResponse
from app.services.entity_service import CachedEntityService, SyncingEntityService
from app.services.event_bus import EventBus
from app.services.approval_service import ApprovalService
from app.services.asset_service import AssetHierarchyService
from app.services.risk_assessment_service import RiskAssessmentService
from app.services.task_hazard_service import TaskHazardService
from app.services.user_service import UserService

logger = logging.getLogger(__name__)


class SyncService:
    """Runs and reports on sync for every domain."""

    def __init__(
        self,
        store: LocalStore,
        services: List[SyncingEntityService],
        monitor: Optional[ConnectivityMonitor] = None,
    ):
        self.store = store
        self.monitor = monitor
        self.services: Dict[str, SyncingEntityService] = {
            service.entity_type.value: service for service in services
        }
        self._schedulers: Dict[str, AutoSyncScheduler] = {}

    def get_service(self, entity_type: str) -> Optional[SyncingEntityService]:
        return self.services.get(entity_type)

    def is_online(self) -> bool:
        return self.monitor is None or self.monitor.is_online()

    @property
    def is_syncing(self) -> bool:
        return any(service.is_syncing for service in self.services.values())

    async def sync_all(self, force: bool = False) -> SyncAllResponse:
        """
        Run every domain's sync pass in turn.

        An expired session stops the run; the remaining domains would fail
        the same way.
        """
        response = SyncAllResponse()

        for entity_type, service in self.services.items():
            try:
                result = await service.sync_pending(force=force)
            except AuthExpiredError:
                logger.warning(f"Sync stopped at {entity_type}: authentication expired")
                raise

            response.results[entity_type] = result
            response.synced += result.synced
            response.failed += result.failed
            response.pending += result.pending

        logger.info(f"Sync complete: {response.synced} synced, {response.failed} failed, {response.pending} pending")
        return response

    async def sync_domain(self, entity_type: str, force: bool = False) -> SyncResult:
        service = self.services.get(entity_type)
        if service is None:
            raise KeyError(entity_type)
        return await service.sync_pending(force=force)

    async def get_sync_status(self) -> SyncStatusResponse:
        await self.store.wait_until_ready()

        domains = []
        for entity_type, service in self.services.items():
            domains.append(DomainSyncStatus(
                entity_type=entity_type,
                pending=await self.store.count_pending(entity_type),
                unsynced_rows=await self.store.count(service.table, "synced = ?", [0]),
                cached_rows=await self.store.count(service.table),
                is_syncing=service.is_syncing,
                last_run_at=service.sync_lock.last_run_at,
            ))

        return SyncStatusResponse(
            is_online=self.is_online(),
            is_syncing=self.is_syncing,
            total_pending=sum(domain.pending for domain in domains),
            domains=domains,
        )

    # ===========================
    # Auto-sync
    # ===========================

    def start_auto_sync(self, interval: Optional[float] = None):
        """Start one scheduler per domain. Already running schedulers are left alone."""
        interval = interval or settings.SYNC_INTERVAL_SECONDS
        for entity_type, service in self.services.items():
            if entity_type in self._schedulers:
                continue
            scheduler = AutoSyncScheduler(service, self.monitor, interval)
            scheduler.start()
            self._schedulers[entity_type] = scheduler

    def stop_auto_sync(self):
        for scheduler in self._schedulers.values():
            scheduler.stop()
        self._schedulers.clear()

    @property
    def auto_sync_running(self) -> bool:
        return bool(self._schedulers)


# Global sync service instance (initialized in main.py lifespan)
sync_service: Optional[SyncService] = None


def get_sync_service() -> SyncService:
    """Get the global sync service instance."""
    if sync_service is None:
        raise RuntimeError("SyncService not initialized")
    return sync_service


def build_services(
    client: ApiClient,
    store: LocalStore,
    session: SessionProvider,
    monitor: Optional[ConnectivityMonitor] = None,
    event_bus: Optional[EventBus] = None,
) -> Dict[str, CachedEntityService]:
    """Wire every entity service to its gateway and the shared store."""
    common = {"monitor": monitor, "event_bus": event_bus}
    return {
        "task_hazard": TaskHazardService(TaskHazardApi(client), store, session, **common),
        "risk_assessment": RiskAssessmentService(RiskAssessmentApi(client), store, session, **common),
        "approval": ApprovalService(TaskHazardApi(client), store, session, **common),
        "asset": AssetHierarchyService(AssetHierarchyApi(client), store, session, **common),
        "user": UserService(UserApi(client), store, session, **common),
    }
