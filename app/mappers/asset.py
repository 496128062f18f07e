# app/mappers/asset.py
from typing import Any, Dict, Iterable, List

from app.mappers.base import EntityMapper, dumps, record_id, strip_local_keys


def parent_of(record: Dict[str, Any]):
    parent = record.get("parent") or record.get("parentId")
    if isinstance(parent, dict):
        return record_id(parent)
    return str(parent) if parent else None


class AssetMapper(EntityMapper):
    table = "assets"
    label = "asset"
    plural = "assets"

    def to_local_row(self, record: Dict[str, Any], synced: int = 1) -> Dict[str, Any]:
        entity_id = record_id(record)
        return {
            "id": entity_id,
            "name": record.get("name") or "Unnamed Asset",
            "type": record.get("objectType") or record.get("type"),
            "parent_id": parent_of(record),
            "hierarchy_path": record.get("hierarchyPath"),
            "synced": synced,
            "metadata": dumps({**record, "id": entity_id}),
            **self.timestamps(record),
        }

    def to_local_rows(self, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # Parents before children; records without a level go last
        ordered = sorted(
            (r for r in records if isinstance(r, dict)),
            key=lambda r: r.get("level") if isinstance(r.get("level"), (int, float)) else float("inf"),
        )
        return super().to_local_rows(ordered)

    def from_local_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        result = self.metadata_of(row)
        result.update({
            "name": row.get("name"),
            "objectType": row.get("type"),
            "parent": row.get("parent_id"),
            "hierarchyPath": row.get("hierarchy_path"),
        })
        return self.finalize(result, row)

    def to_api_payload(self, row: Dict[str, Any]) -> Dict[str, Any]:
        payload = strip_local_keys(self.metadata_of(row))
        payload.pop("id", None)
        payload.update({
            "name": row.get("name"),
            "objectType": row.get("type"),
            "parent": row.get("parent_id"),
        })
        return payload
