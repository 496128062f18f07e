# app/models/approval.py
from sqlmodel import Field, Text
from typing import Optional

from app.models.mixins import CacheRecord


class ApprovalRow(CacheRecord, table=True):
    """Locally cached supervisor approval request (one per task hazard)."""
    __tablename__ = "approvals"

    task_hazard_id: Optional[str] = Field(default=None, index=True)
    scope_of_work: Optional[str] = Field(default=None)
    location: Optional[str] = Field(default=None)
    date: Optional[str] = Field(default=None)
    time: Optional[str] = Field(default=None)
    supervisor: Optional[str] = Field(default=None)
    supervisor_email: Optional[str] = Field(default=None)
    approval_status: str = Field(default="pending", index=True)
    approval_comments: Optional[str] = Field(default=None, sa_type=Text)
    approved_by: Optional[str] = Field(default=None)
    approved_at: Optional[str] = Field(default=None)
    signature: Optional[str] = Field(default=None, sa_type=Text)
    risks: Optional[str] = Field(default=None, sa_type=Text)  # JSON array
    individuals: Optional[str] = Field(default=None, sa_type=Text)  # JSON array
