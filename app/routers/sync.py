"""
Local sync control endpoints.
Exposes sync status, manual sync triggers and the pending queue.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.mappers.base import loads
from app.models.sync import EntityType
from app.schemas.sync import (
    QueueEntryInfo,
    QueueListResponse,
    SyncAllResponse,
    SyncResult,
    SyncStatusResponse,
)
from app.services.sync_service import SyncService, get_sync_service

router = APIRouter(
    prefix="/sync",
    tags=["sync"],
    responses={404: {"description": "Not found"}},
)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(sync_service: SyncService = Depends(get_sync_service)):
    """
    Get the sync status of every domain.

    Returns:
    - Connectivity state
    - Pending queue entries and unsynced rows per domain
    - Whether a sync pass is currently running
    """
    return await sync_service.get_sync_status()


@router.post("/run", response_model=SyncAllResponse)
async def run_sync(sync_service: SyncService = Depends(get_sync_service)):
    """Replay the pending queue of every domain now."""
    return await sync_service.sync_all(force=True)


@router.post("/{entity_type}/run", response_model=SyncResult)
async def run_domain_sync(
    entity_type: str,
    sync_service: SyncService = Depends(get_sync_service)
):
    """Replay the pending queue of a single domain now."""
    if sync_service.get_service(entity_type) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown entity type: {entity_type}"
        )
    return await sync_service.sync_domain(entity_type, force=True)


@router.get("/queue", response_model=QueueListResponse)
async def list_queue(
    entity_type: EntityType = Query(None, description="Only show entries for this domain"),
    limit: int = Query(100, ge=1, le=1000),
    sync_service: SyncService = Depends(get_sync_service)
):
    """List pending queue entries (debug view)."""
    store = sync_service.store
    await store.wait_until_ready()

    items = await store.get_pending_sync_items(entity_type, limit=limit)
    entries = [
        QueueEntryInfo(
            id=item["id"],
            entity_type=item["entity_type"],
            entity_id=item["entity_id"],
            operation=item["operation"],
            retry_count=item["retry_count"],
            created_at=item["created_at"],
            data=loads(item["data"], {}, item["entity_id"]),
        )
        for item in items
    ]
    return QueueListResponse(entries=entries, total=await store.count_pending(entity_type))
