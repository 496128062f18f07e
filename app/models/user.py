# app/models/user.py
from sqlmodel import Field
from typing import Optional

from app.models.mixins import CacheRecord


class UserRow(CacheRecord, table=True):
    """Locally cached user directory entry."""
    __tablename__ = "users"

    username: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None, index=True)
    name: Optional[str] = Field(default=None)
    full_name: Optional[str] = Field(default=None)
    role: str = Field(default="user")
    company: Optional[str] = Field(default=None)
