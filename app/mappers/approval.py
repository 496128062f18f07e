# app/mappers/approval.py
"""
Approval requests are task hazards that need a supervisor decision.

The server nests decisions in an ``approvals`` array; the cache lifts the
latest decision into flat columns so pending work can be found with SQL.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.mappers.base import EntityMapper, dumps, loads, record_id


def latest_decision(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    approvals = record.get("approvals")
    if not isinstance(approvals, list) or not approvals:
        return None
    return next((a for a in approvals if isinstance(a, dict) and a.get("isLatest")), approvals[0])


class ApprovalMapper(EntityMapper):
    table = "approvals"
    label = "approval request"
    plural = "approval requests"

    def to_local_row(self, record: Dict[str, Any], synced: int = 1) -> Dict[str, Any]:
        entity_id = record_id(record)
        latest = latest_decision(record) or {}
        if not isinstance(latest, dict):
            latest = {}

        supervisor_email = None
        supervisor_name = None
        supervisor = latest.get("supervisor")
        if isinstance(supervisor, dict):
            supervisor_email = supervisor.get("email")
            supervisor_name = supervisor.get("name")
        elif supervisor:
            supervisor_email = supervisor_name = supervisor

        if not supervisor_email:
            supervisor_email = record.get("supervisor") or record.get("supervisorEmail")

        return {
            "id": entity_id,
            "task_hazard_id": entity_id,
            "scope_of_work": record.get("scopeOfWork") or record.get("taskName") or "",
            "location": record.get("location") or "",
            "date": record.get("date") or "",
            "time": record.get("time") or "",
            "supervisor": supervisor_name or supervisor_email or "",
            "supervisor_email": supervisor_email or "",
            "approval_status": latest.get("status") or record.get("approvalStatus") or "pending",
            "approval_comments": latest.get("comments") or "",
            "approved_by": latest.get("approvedBy") or latest.get("rejectedBy") or "",
            "approved_at": latest.get("processedAt") or "",
            "signature": latest.get("signature") or "",
            "risks": dumps(record.get("risks") or []),
            "individuals": dumps(record.get("individuals") or []),
            "synced": synced,
            "metadata": dumps({**record, "id": entity_id, "approvals": record.get("approvals") or []}),
            **self.timestamps(record),
        }

    def from_local_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        metadata = self.metadata_of(row)
        status = row.get("approval_status")

        result = {
            "scopeOfWork": row.get("scope_of_work"),
            "location": row.get("location"),
            "date": row.get("date"),
            "time": row.get("time"),
            "supervisor": row.get("supervisor"),
            "supervisorEmail": row.get("supervisor_email"),
            "risks": loads(row.get("risks"), [], row.get("id")),
            "individuals": loads(row.get("individuals"), [], row.get("id")),
            "requiresApproval": True,
        }
        result.update(metadata)

        if not metadata.get("approvals"):
            result["approvals"] = [{
                "status": status,
                "comments": row.get("approval_comments"),
                "approvedBy": row.get("approved_by"),
                "rejectedBy": row.get("approved_by"),
                "processedAt": row.get("approved_at"),
                "signature": row.get("signature"),
                "isLatest": True,
                "supervisor": {"email": row.get("supervisor_email"), "name": row.get("supervisor")},
            }]

        # A local decision lives in the columns until the server confirms it
        result["approvalStatus"] = status
        result["status"] = "Pending" if status == "pending" else status
        return self.finalize(result, row)

    @staticmethod
    def approval_update_row(decision: Dict[str, Any], synced: int) -> Dict[str, Any]:
        """Columns to write when a supervisor approves or rejects."""
        return {
            "approval_status": "approved" if decision.get("status") == "Approved" else "rejected",
            "approval_comments": decision.get("comments") or "",
            "approved_by": decision.get("approvedBy") or decision.get("rejectedBy") or "",
            "approved_at": (
                decision.get("approvedAt")
                or decision.get("rejectedAt")
                or datetime.now(timezone.utc).isoformat()
            ),
            "signature": decision.get("signature") or "",
            "synced": synced,
        }
