# app/services/asset_service.py
"""
Asset hierarchy service.

Assets form a tree through ``parent_id``. Listings are bulk loaded with
foreign keys suspended, then any child whose parent did not arrive is
detached (``parent_id`` set to NULL) instead of failing the load.
"""
import logging
from typing import Any, Dict, List

from app.mappers.asset import AssetMapper
from app.models.sync import EntityType
from app.services.entity_service import OfflineEntityService

logger = logging.getLogger(__name__)


class AssetHierarchyService(OfflineEntityService):
    mapper = AssetMapper()
    entity_type = EntityType.ASSET
    parent_column = "parent_id"
    # No status column: offline deletes remove the row and queue the delete
    tombstone_column = None

    async def get_children(self, parent_id: str) -> List[Dict[str, Any]]:
        """Cached direct children of an asset."""
        await self._ready()
        rows = await self.store.get_all(self.table, "parent_id = ?", [parent_id], order_by="name")
        return self.mapper.from_local_rows(rows)

    async def get_roots(self) -> List[Dict[str, Any]]:
        """Cached top-level assets."""
        await self._ready()
        rows = await self.store.get_all(self.table, "parent_id IS NULL", order_by="name")
        return self.mapper.from_local_rows(rows)
