# app/api/risk_assessments.py
from app.api.base import EntityApi


class RiskAssessmentApi(EntityApi):
    base_path = "/api/risk-assessments"
