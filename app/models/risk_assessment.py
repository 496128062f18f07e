# app/models/risk_assessment.py
from sqlmodel import Field, Text
from typing import Optional

from app.models.mixins import CacheRecord


class RiskAssessmentRow(CacheRecord, table=True):
    """Locally cached risk assessment."""
    __tablename__ = "risk_assessments"

    title: Optional[str] = Field(default=None)  # scopeOfWork on the server
    location: Optional[str] = Field(default=None)
    date: Optional[str] = Field(default=None)
    time: Optional[str] = Field(default=None)
    assessor: Optional[str] = Field(default=None)  # supervisor on the server
    risks: Optional[str] = Field(default=None, sa_type=Text)  # JSON array
    controls: Optional[str] = Field(default=None, sa_type=Text)  # JSON array
    severity: Optional[str] = Field(default=None)
    likelihood: Optional[str] = Field(default=None)
    status: str = Field(default="draft", index=True)
    created_by: Optional[str] = Field(default=None)
