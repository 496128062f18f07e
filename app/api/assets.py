# app/api/assets.py
from typing import Any

from app.api.base import EntityApi


class AssetHierarchyApi(EntityApi):
    base_path = "/api/asset-hierarchy"

    async def delete(self, entity_id: str) -> Any:
        # The asset API only exposes the universal delete route
        return await self.client.delete(self._path(f"/universal/{entity_id}"))
