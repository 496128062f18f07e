# app/services/__init__.py
"""
Shared services layer: offline-first entity services and the sync coordinator.
"""

from app.services.event_bus import EventBus, EventType, get_event_bus
from app.services.entity_service import CachedEntityService, OfflineEntityService, SyncingEntityService
from app.services.task_hazard_service import TaskHazardService
from app.services.risk_assessment_service import RiskAssessmentService
from app.services.approval_service import ApprovalService
from app.services.asset_service import AssetHierarchyService
from app.services.user_service import UserService
from app.services.sync_service import SyncService, get_sync_service

__all__ = [
    "EventBus",
    "EventType",
    "get_event_bus",
    "CachedEntityService",
    "OfflineEntityService",
    "SyncingEntityService",
    "TaskHazardService",
    "RiskAssessmentService",
    "ApprovalService",
    "AssetHierarchyService",
    "UserService",
    "SyncService",
    "get_sync_service",
]
