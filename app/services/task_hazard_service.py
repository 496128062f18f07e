# app/services/task_hazard_service.py
"""
Task hazard assessments: cached reads, offline writes and queue replay.
"""
import logging
from typing import Any

from app.mappers.task_hazard import TaskHazardMapper
from app.models.sync import EntityType
from app.services.entity_service import OfflineEntityService

logger = logging.getLogger(__name__)


class TaskHazardService(OfflineEntityService):
    mapper = TaskHazardMapper()
    entity_type = EntityType.TASK_HAZARD

    async def get_approval_history(self, entity_id: str) -> Any:
        """Online only; approval history is never cached."""
        return await self.api.get_approval_history(entity_id)
