# app/api/base.py
"""
Remote gateway base: the uniform CRUD contract every entity endpoint shares.
"""
from typing import Any, Dict, Optional

from app.core.api_client import ApiClient


class EntityApi:
    """CRUD wrapper around one REST collection. Responses are ``{"data": ...}`` envelopes."""

    base_path: str = ""

    def __init__(self, client: ApiClient):
        self.client = client

    def _path(self, suffix: str = "") -> str:
        return f"{self.base_path}{suffix}"

    async def create(self, payload: Dict[str, Any]) -> Any:
        return await self.client.post(self._path(), payload)

    async def get_all(self, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.client.get(self._path(), params=params)

    async def get_one(self, entity_id: str) -> Any:
        return await self.client.get(self._path(f"/{entity_id}"))

    async def update(self, entity_id: str, payload: Dict[str, Any]) -> Any:
        return await self.client.put(self._path(f"/{entity_id}"), {**payload, "id": entity_id})

    async def delete(self, entity_id: str) -> Any:
        return await self.client.delete(self._path(f"/{entity_id}"))
