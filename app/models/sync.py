"""
Sync queue model for offline-first operation.

Each row is a pending mutation that could not be pushed to the remote API
at the time it was made and must be replayed once connectivity returns.
"""

from sqlmodel import SQLModel, Field, Text, Index
from typing import Optional
from enum import Enum

from app.models.mixins import epoch_seconds


class EntityType(str, Enum):
    """Domains that can queue offline mutations."""
    TASK_HAZARD = "task_hazard"
    RISK_ASSESSMENT = "risk_assessment"
    APPROVAL = "approval"
    ASSET = "asset"


class SyncOperation(str, Enum):
    """Operations that can be replayed against the remote API."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PROCESS = "process"  # Approval decisions


class SyncQueueEntry(SQLModel, table=True):
    """
    A pending mutation awaiting replay.

    Attributes:
        id: Local autoincrement id
        entity_type: Domain tag (task_hazard, risk_assessment, approval, asset)
        entity_id: Id of the affected record (temp or server id)
        operation: create, update, delete or process
        data: JSON payload needed to replay the operation
        retry_count: Failed (non-network) replay attempts so far
        created_at: Enqueue time, seconds since epoch
    """
    __tablename__ = "sync_queue"
    __table_args__ = (
        Index("idx_sync_queue_entity", "entity_type", "entity_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    entity_type: str = Field(max_length=50, description="Domain tag")
    entity_id: str = Field(max_length=255, description="Affected record id")
    operation: str = Field(max_length=20, description="Operation to replay")
    data: str = Field(sa_type=Text, description="Serialized replay payload")

    retry_count: int = Field(default=0, description="Failed replay attempts")
    created_at: int = Field(default_factory=epoch_seconds, description="Enqueue timestamp")
