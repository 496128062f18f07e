# app/mappers/task_hazard.py
from typing import Any, Dict

from app.mappers.base import (
    EntityMapper, dumps, ensure_risks, first, join_people, loads, record_id, strip_local_keys,
)


class TaskHazardMapper(EntityMapper):
    table = "task_hazards"
    label = "task hazard"
    plural = "task hazards"

    def to_local_row(self, record: Dict[str, Any], synced: int = 1) -> Dict[str, Any]:
        entity_id = record_id(record)
        return {
            "id": entity_id,
            "task_name": record.get("scopeOfWork") or record.get("taskName") or "Unnamed Task",
            "location": record.get("location") or "",
            "date": record.get("date") or "",
            "supervisor": record.get("supervisor") or "",
            "hazards": dumps(record.get("hazards") or []),
            "controls": dumps(record.get("controls") or []),
            "risk_level": record.get("riskLevel") or "Low",
            "status": record.get("status") or "draft",
            "created_by": record.get("createdBy") or "",
            "synced": synced,
            # Complete record, so fields without a column survive the round trip
            "metadata": dumps({**record, "id": entity_id}),
            **self.timestamps(record),
        }

    def from_local_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        metadata = self.metadata_of(row)

        result = {
            "taskName": row.get("task_name"),
            "location": row.get("location"),
            "date": row.get("date"),
            "time": "",
            "supervisor": row.get("supervisor"),
            "individual": "",
            "hazards": loads(row.get("hazards"), [], row.get("id")),
            "controls": loads(row.get("controls"), [], row.get("id")),
            "riskLevel": row.get("risk_level"),
            "createdBy": row.get("created_by"),
            "createdAt": row.get("created_at"),
            "updatedAt": row.get("updated_at"),
        }
        result.update(metadata)

        # The task_name column is the canonical source for scopeOfWork when metadata lacks it
        result["scopeOfWork"] = metadata.get("scopeOfWork") or row.get("task_name")
        result["status"] = row.get("status")
        return self.finalize(result, row)

    def to_api_payload(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Rebuild the payload the task hazard API expects from a cached row."""
        metadata = self.metadata_of(row)
        payload = strip_local_keys(metadata)
        payload.pop("id", None)

        status = row.get("status")
        if status == "deleted":
            status = metadata.get("status")

        supervisor = first(metadata.get("supervisor"), row.get("supervisor"))
        payload.update({
            "scopeOfWork": first(metadata.get("scopeOfWork"), row.get("task_name")),
            "location": first(row.get("location"), metadata.get("location")),
            "date": first(row.get("date"), metadata.get("date")),
            "time": metadata.get("time"),
            "supervisor": supervisor,
            "individual": join_people(metadata.get("individual")),
            "status": status or "draft",
            "risks": ensure_risks(metadata.get("risks"), row.get("supervisor"), metadata.get("supervisor")),
        })
        return payload
