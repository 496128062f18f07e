# app/services/risk_assessment_service.py
from app.mappers.risk_assessment import RiskAssessmentMapper
from app.models.sync import EntityType
from app.services.entity_service import OfflineEntityService


class RiskAssessmentService(OfflineEntityService):
    """Risk assessments: cached reads, offline writes and queue replay."""

    mapper = RiskAssessmentMapper()
    entity_type = EntityType.RISK_ASSESSMENT
