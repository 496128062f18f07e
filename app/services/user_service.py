# app/services/user_service.py
"""
User directory.

Users are cached for offline lookups only. Creating, editing and deleting
users is an administrative action that requires the server, so those calls
are never queued.
"""
import logging
from typing import Any, Dict

from app.core.errors import NetworkError
from app.mappers.base import record_id
from app.mappers.user import UserMapper
from app.schemas.sync import DataSource, ServiceResult
from app.services.entity_service import CachedEntityService, unwrap

logger = logging.getLogger(__name__)


class UserService(CachedEntityService):
    mapper = UserMapper()
    tombstone_column = None

    def _require_online(self):
        if not self.is_online():
            raise NetworkError("User management requires an internet connection.")

    async def _cache_server_record(self, record: Any):
        if isinstance(record, dict) and record_id(record):
            await self.store.upsert(self.table, self.mapper.to_local_row(record, synced=1))

    async def create(self, payload: Dict[str, Any]) -> ServiceResult:
        await self._ready()
        self._require_session()
        self._require_online()

        record = unwrap(await self.api.create(payload))
        await self._cache_server_record(record)
        logger.info(f"Created user {record_id(record) if isinstance(record, dict) else ''}")
        return ServiceResult(data=record, source=DataSource.API)

    async def update(self, entity_id: str, payload: Dict[str, Any]) -> ServiceResult:
        await self._ready()
        self._require_session()
        self._require_online()

        record = unwrap(await self.api.update(entity_id, payload))
        await self._cache_server_record(record)
        return ServiceResult(data=record, source=DataSource.API)

    async def delete(self, entity_id: str) -> ServiceResult:
        await self._ready()
        self._require_session()
        self._require_online()

        await self.api.delete(entity_id)
        await self.store.delete(self.table, entity_id)
        logger.info(f"Deleted user {entity_id}")
        return ServiceResult(data={"id": entity_id, "deleted": True}, source=DataSource.API)
