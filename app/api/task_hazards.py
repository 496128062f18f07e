# app/api/task_hazards.py
import logging
from typing import Any, Dict, Optional

from app.api.base import EntityApi
from app.core.errors import ApiError, ErrorKind

logger = logging.getLogger(__name__)


class TaskHazardApi(EntityApi):
    base_path = "/api/task-hazards"

    async def get_approvals(self, params: Optional[Dict[str, Any]] = None) -> Any:
        """Supervisor approval queue. Body: ``{"data": {"taskHazards": [...]}}``."""
        return await self.client.get(self._path("/approvals"), params=params)

    async def get_approval_history(self, entity_id: str) -> Any:
        return await self.client.get(self._path(f"/{entity_id}/approval-history"))

    async def process_approval(self, task_hazard_id: str, decision: Dict[str, Any]) -> Any:
        """
        Approve or reject a task hazard.

        Tries PUT first and retries as POST when the server rejects the PUT.
        Auth and network failures are not retried.
        """
        safe_id = str(task_hazard_id) if task_hazard_id is not None else ""
        if not safe_id or safe_id in ("None", "null", "undefined"):
            raise ApiError("Invalid task hazard ID provided", 400, "INVALID_ID")

        body = {**decision, "taskHazardId": safe_id, "id": safe_id}
        url = self._path(f"/{safe_id}/approval")

        try:
            return await self.client.put(url, body)
        except ApiError as e:
            if e.kind in (ErrorKind.AUTH, ErrorKind.NETWORK):
                raise
            logger.info(f"PUT {url} rejected ({e.status}), retrying as POST")
            return await self.client.post(url, body)
