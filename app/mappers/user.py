# app/mappers/user.py
from typing import Any, Dict, Optional

from app.mappers.base import EntityMapper, dumps, record_id


def company_name(record: Dict[str, Any]) -> Optional[str]:
    company = record.get("company")
    if isinstance(company, dict):
        company = company.get("name") or company.get("_id") or company.get("id")
    company = company or record.get("companyId")
    return str(company) if company else None


class UserMapper(EntityMapper):
    table = "users"
    label = "user"
    plural = "users"

    def to_local_row(self, record: Dict[str, Any], synced: int = 1) -> Dict[str, Any]:
        entity_id = record_id(record)
        return {
            "id": entity_id,
            "username": record.get("username"),
            "email": record.get("email"),
            "name": record.get("name") or record.get("fullName") or record.get("username"),
            "full_name": record.get("fullName") or record.get("name"),
            "role": record.get("role") or "user",
            "company": company_name(record),
            "synced": synced,
            "metadata": dumps({**record, "id": entity_id}),
            **self.timestamps(record),
        }

    def from_local_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        result = {"company": row.get("company")}
        result.update(self.metadata_of(row))
        result.update({
            "username": row.get("username"),
            "email": row.get("email"),
            "name": row.get("name"),
            "fullName": row.get("full_name"),
            "role": row.get("role"),
        })
        return self.finalize(result, row)
