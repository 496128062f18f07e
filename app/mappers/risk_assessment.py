# app/mappers/risk_assessment.py
from typing import Any, Dict

from app.mappers.base import (
    EntityMapper, dumps, ensure_risks, first, join_people, loads, record_id, strip_local_keys, to_iso,
)


class RiskAssessmentMapper(EntityMapper):
    """
    Risk assessments are stored under local column names that differ from the
    API: ``title`` holds scopeOfWork and ``assessor`` holds supervisor.
    """

    table = "risk_assessments"
    label = "risk assessment"
    plural = "risk assessments"

    def to_local_row(self, record: Dict[str, Any], synced: int = 1) -> Dict[str, Any]:
        entity_id = record_id(record)
        risks = record.get("risks")
        controls = record.get("controls")
        return {
            "id": entity_id,
            "title": record.get("scopeOfWork") or record.get("title"),
            "location": record.get("location"),
            "date": record.get("date"),
            "time": record.get("time"),
            "assessor": record.get("supervisor") or record.get("assessor"),
            "risks": dumps(risks) if risks is not None else None,
            "controls": dumps(controls) if controls is not None else None,
            "severity": record.get("severity"),
            "likelihood": record.get("likelihood"),
            "status": record.get("status") or "draft",
            "created_by": record.get("createdBy") or record.get("created_by"),
            "synced": synced,
            "metadata": dumps({**record, "id": entity_id}),
            **self.timestamps(record),
        }

    def from_local_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        metadata = self.metadata_of(row)

        result = {
            "location": row.get("location"),
            "date": row.get("date"),
            "time": row.get("time"),
            "severity": row.get("severity"),
            "likelihood": row.get("likelihood"),
        }
        result.update(metadata)

        result["scopeOfWork"] = metadata.get("scopeOfWork") or row.get("title")
        result["supervisor"] = metadata.get("supervisor") or row.get("assessor")
        result["risks"] = loads(row.get("risks"), [], row.get("id"))
        result["controls"] = loads(row.get("controls"), [], row.get("id"))
        result["status"] = row.get("status")
        result["createdAt"] = metadata.get("createdAt") or to_iso(row.get("created_at"))
        result["updatedAt"] = metadata.get("updatedAt") or to_iso(row.get("updated_at"))
        return self.finalize(result, row)

    def to_api_payload(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Rebuild the payload the risk assessment API expects from a cached row."""
        metadata = self.metadata_of(row)
        payload = strip_local_keys(metadata)
        payload.pop("id", None)

        status = row.get("status")
        if status == "deleted":
            status = metadata.get("status")

        risks = loads(row.get("risks"), [], row.get("id")) if row.get("risks") else metadata.get("risks")
        controls = loads(row.get("controls"), [], row.get("id")) if row.get("controls") else metadata.get("controls")

        payload.update({
            "scopeOfWork": first(metadata.get("scopeOfWork"), row.get("title")),
            "supervisor": first(metadata.get("supervisor"), row.get("assessor")),
            "individuals": join_people(metadata.get("individuals")),
            "assessmentTeam": join_people(metadata.get("assessmentTeam")),
            "assetSystem": metadata.get("assetSystem"),
            "company": metadata.get("company"),
            "location": first(row.get("location"), metadata.get("location")),
            "date": first(row.get("date"), metadata.get("date")),
            "time": first(row.get("time"), metadata.get("time")),
            "status": status or "draft",
            "risks": ensure_risks(risks, row.get("assessor"), metadata.get("supervisor")),
            "controls": controls or [],
            "severity": row.get("severity"),
            "likelihood": row.get("likelihood"),
        })
        return payload
