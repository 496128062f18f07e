# app/models/__init__.py
"""
Local cache tables.

Importing this package registers every table with ``SQLModel.metadata``.
"""

from app.models.task_hazard import TaskHazardRow
from app.models.risk_assessment import RiskAssessmentRow
from app.models.approval import ApprovalRow
from app.models.asset import AssetRow
from app.models.user import UserRow
from app.models.sync import EntityType, SyncOperation, SyncQueueEntry

# table name -> model, used by the store to fill column defaults
TABLE_MODELS = {
    TaskHazardRow.__tablename__: TaskHazardRow,
    RiskAssessmentRow.__tablename__: RiskAssessmentRow,
    ApprovalRow.__tablename__: ApprovalRow,
    AssetRow.__tablename__: AssetRow,
    UserRow.__tablename__: UserRow,
    SyncQueueEntry.__tablename__: SyncQueueEntry,
}

__all__ = [
    "TaskHazardRow",
    "RiskAssessmentRow",
    "ApprovalRow",
    "AssetRow",
    "UserRow",
    "EntityType",
    "SyncOperation",
    "SyncQueueEntry",
    "TABLE_MODELS",
]
