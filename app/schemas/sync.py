"""
Sync schemas for offline-first functionality
Result envelopes returned by the entity services and the local control API
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from enum import Enum


# ===========================
# Enums
# ===========================

class DataSource(str, Enum):
    """Where the data in a service result came from"""
    API = "api"
    CACHE = "cache"
    OFFLINE = "offline"


# ===========================
# Service Results
# ===========================

class ServiceResult(BaseModel):
    """Result of a read or write through an entity service"""
    data: Any = None
    source: DataSource = Field(DataSource.API, description="api, cache or offline")
    offline: bool = Field(False, description="True when the remote API was not used")
    pending_sync: bool = Field(False, description="True when a queued mutation awaits replay")

    class Config:
        json_schema_extra = {
            "example": {
                "data": {
                    "id": "temp_1729250000000_k3j9x0a2b",
                    "scopeOfWork": "Pump inspection",
                    "_offline": True,
                    "_pendingSync": True
                },
                "source": "offline",
                "offline": True,
                "pending_sync": True
            }
        }


class SyncResult(BaseModel):
    """Outcome of one sync pass over a domain's queue"""
    synced: int = Field(0, description="Entries replayed successfully")
    failed: int = Field(0, description="Entries that failed with a non-network error")
    pending: int = Field(0, description="Entries still queued after the pass")
    message: Optional[str] = None
    offline: bool = False
    error: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "synced": 3,
                "failed": 0,
                "pending": 0,
                "message": "Synced 3 task hazards"
            }
        }


# ===========================
# Status & Diagnostics
# ===========================

class DomainSyncStatus(BaseModel):
    """Sync state of one entity domain"""
    entity_type: str
    pending: int = Field(0, description="Queued mutations")
    unsynced_rows: int = Field(0, description="Cached rows holding local changes")
    cached_rows: int = 0
    is_syncing: bool = False
    last_run_at: Optional[float] = None


class SyncStatusResponse(BaseModel):
    """Overall sync status of this client"""
    is_online: bool
    is_syncing: bool = False
    total_pending: int = 0
    domains: List[DomainSyncStatus] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "is_online": True,
                "is_syncing": False,
                "total_pending": 2,
                "domains": [
                    {
                        "entity_type": "task_hazard",
                        "pending": 2,
                        "unsynced_rows": 2,
                        "cached_rows": 40,
                        "is_syncing": False,
                        "last_run_at": None
                    }
                ]
            }
        }


class SyncAllResponse(BaseModel):
    """Aggregated result of a sync pass over every domain"""
    synced: int = 0
    failed: int = 0
    pending: int = 0
    results: Dict[str, SyncResult] = Field(default_factory=dict)


class QueueEntryInfo(BaseModel):
    """A pending mutation (debug view)"""
    id: int
    entity_type: str
    entity_id: str
    operation: str
    retry_count: int = 0
    created_at: int
    data: Any = None


class QueueListResponse(BaseModel):
    """Pending mutations"""
    entries: List[QueueEntryInfo] = Field(default_factory=list)
    total: int = 0
