# app/mappers/base.py
"""
Shared helpers for converting between server records and local cache rows.

Server records are richer and change more often than the local schema, so
every mapper keeps the complete record in the ``metadata`` blob and only
lifts a handful of fields into real columns.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

# Keys that only make sense on this device and must never be sent to the server
LOCAL_ONLY_KEYS = {"_id", "_offline", "_pendingSync", "_syncedFromServer", "synced", "metadata", "__v"}

PLACEHOLDER_RISK_DESCRIPTION = "No hazards specified"
UNASSIGNED = "Not assigned"


def dumps(value: Any) -> Optional[str]:
    """Serialize a value for a JSON text column. None stays None."""
    if value is None:
        return None
    return json.dumps(value, default=str)


def loads(raw: Any, default: Any = None, entity_id: Optional[str] = None) -> Any:
    """
    Deserialize a JSON text column without ever raising.

    Already-decoded values pass through; malformed text yields ``default``.
    """
    if default is None:
        default = {}
    if raw is None or raw == "":
        return default
    if not isinstance(raw, (str, bytes)):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Failed to parse cached JSON for {entity_id or 'record'}, using default")
        return default
    if value is None or not isinstance(value, type(default)):
        return default
    return value


def record_id(record: Dict[str, Any]) -> Optional[str]:
    """Server records carry their id as ``_id`` or ``id``."""
    value = record.get("_id") or record.get("id")
    return str(value) if value is not None else None


def to_epoch(value: Any) -> Optional[int]:
    """Convert an ISO timestamp or epoch number into epoch seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        # Millisecond timestamps from JavaScript clients
        return int(value / 1000) if value > 10_000_000_000 else int(value)
    try:
        return int(datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp())
    except ValueError:
        return None


def to_iso(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat().replace("+00:00", "Z")


def join_people(value: Any) -> Any:
    """
    Normalize a list of people into a comma-joined string.

    Entries may be plain strings or objects; objects contribute their
    ``email``, else ``name``, else ``value``. Non-list values pass through.
    """
    if not isinstance(value, list):
        return value

    names = []
    for entry in value:
        if isinstance(entry, dict):
            entry = entry.get("email") or entry.get("name") or entry.get("value")
        if entry:
            names.append(str(entry).strip())
    return ", ".join(name for name in names if name)


def placeholder_risk(responsible_person: Optional[str]) -> Dict[str, Any]:
    """Stand-in for an empty risks array, which the API rejects."""
    return {
        "riskDescription": PLACEHOLDER_RISK_DESCRIPTION,
        "riskType": "Other",
        "asIsLikelihood": 1,
        "asIsConsequence": 1,
        "mitigatingAction": "None required",
        "mitigatingActionType": "Other",
        "mitigatedLikelihood": 1,
        "mitigatedConsequence": 1,
        "responsiblePerson": responsible_person or UNASSIGNED,
        "requiresSupervisorSignature": False,
    }


def ensure_risks(risks: Any, *responsible_candidates: Optional[str]) -> List[Dict[str, Any]]:
    """Return ``risks`` unchanged, or a single placeholder risk when it is empty."""
    if isinstance(risks, list) and risks:
        return risks
    responsible = next((c for c in responsible_candidates if c), None)
    return [placeholder_risk(responsible)]


def strip_local_keys(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if key not in LOCAL_ONLY_KEYS}


def first(*values: Any) -> Any:
    """First value that is not None (``??`` chaining)."""
    for value in values:
        if value is not None:
            return value
    return None


class EntityMapper:
    """
    Base mapper for one entity family.

    Subclasses implement ``to_local_row`` and ``from_local_row``.
    """

    table: str = ""
    label: str = "record"
    plural: str = "records"

    def to_local_row(self, record: Dict[str, Any], synced: int = 1) -> Dict[str, Any]:
        raise NotImplementedError

    def from_local_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def to_local_rows(self, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        rows = []
        for record in records:
            if not isinstance(record, dict) or not record_id(record):
                logger.warning(f"Skipping {self.label} without an id")
                continue
            rows.append(self.to_local_row(record))
        return rows

    def from_local_rows(self, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self.from_local_row(row) for row in rows]

    def metadata_of(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return loads(row.get("metadata"), {}, row.get("id"))

    @staticmethod
    def timestamps(record: Dict[str, Any]) -> Dict[str, int]:
        """
        Stamps the server supplied. Missing ones are left out so the store
        default applies on first insert and a refresh keeps the cached value.
        """
        stamps = {}
        for key, column in (("createdAt", "created_at"), ("updatedAt", "updated_at")):
            value = to_epoch(record.get(key))
            if value is not None:
                stamps[column] = value
        return stamps

    @staticmethod
    def finalize(result: Dict[str, Any], row: Dict[str, Any]) -> Dict[str, Any]:
        """Pin the local id and flag rows that still hold unsynced changes."""
        result["id"] = row["id"]
        result["_id"] = row["id"]
        if row.get("synced") == 0:
            result["_pendingSync"] = True
        else:
            result.pop("_pendingSync", None)
            result.pop("_offline", None)
        return result

    def to_offline_row(self, payload: Dict[str, Any], entity_id: str) -> Dict[str, Any]:
        """Build an unsynced row from a client payload that never reached the server."""
        return self.to_local_row({**strip_local_keys(payload), "id": entity_id}, synced=0)

    def to_api_payload(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Payload to replay for a cached row. Defaults to the stored record."""
        payload = strip_local_keys(self.metadata_of(row))
        payload.pop("id", None)
        return payload
