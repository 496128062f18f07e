# app/api/users.py
from typing import Any, Dict, Optional

from app.api.base import EntityApi


class UserApi(EntityApi):
    """The user endpoints use verb-style paths rather than REST collection routes."""

    base_path = "/api/users"

    async def create(self, payload: Dict[str, Any]) -> Any:
        return await self.client.post(self._path("/createUser"), payload)

    async def get_all(self, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.client.get(self._path("/getAllUser"), params=params)

    async def get_one(self, entity_id: str) -> Any:
        return await self.client.get(self._path(f"/getUserById/{entity_id}"))

    async def update(self, entity_id: str, payload: Dict[str, Any]) -> Any:
        return await self.client.put(self._path(f"/editUser/{entity_id}"), payload)

    async def delete(self, entity_id: str) -> Any:
        return await self.client.delete(self._path(f"/deleteUser/{entity_id}"))
