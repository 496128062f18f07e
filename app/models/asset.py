# app/models/asset.py
from sqlmodel import Field
from typing import Optional

from app.models.mixins import CacheRecord


class AssetRow(CacheRecord, table=True):
    """Locally cached node of the asset hierarchy."""
    __tablename__ = "assets"

    name: str = Field(default="Unnamed Asset")
    type: Optional[str] = Field(default=None)  # objectType on the server
    parent_id: Optional[str] = Field(
        default=None,
        foreign_key="assets.id",
        ondelete="CASCADE",
        index=True
    )
    hierarchy_path: Optional[str] = Field(default=None)
