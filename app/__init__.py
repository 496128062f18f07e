# Import all models to ensure they are registered with SQLModel
from app.models import task_hazard, risk_assessment, approval, asset, user, sync
from app.core import config

__all__ = [
    "task_hazard",
    "risk_assessment",
    "approval",
    "asset",
    "user",
    "sync",
    "config",
]
