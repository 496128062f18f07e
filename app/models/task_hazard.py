# app/models/task_hazard.py
from sqlmodel import Field, Text
from typing import Optional

from app.models.mixins import CacheRecord


class TaskHazardRow(CacheRecord, table=True):
    """Locally cached task hazard assessment."""
    __tablename__ = "task_hazards"

    task_name: str = Field(default="Unnamed Task")
    location: Optional[str] = Field(default=None)
    date: Optional[str] = Field(default=None)
    supervisor: Optional[str] = Field(default=None)
    hazards: Optional[str] = Field(default=None, sa_type=Text)  # JSON array
    controls: Optional[str] = Field(default=None, sa_type=Text)  # JSON array
    risk_level: Optional[str] = Field(default=None)
    status: str = Field(default="draft", index=True)
    created_by: Optional[str] = Field(default=None)
