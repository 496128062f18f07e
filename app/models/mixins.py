"""
Base model for locally cached entities.

Every cached table shares the same bookkeeping columns so the store and the
sync services can treat them uniformly.
"""

import time
from sqlmodel import SQLModel, Field, Text
from typing import Optional


def epoch_seconds() -> int:
    """Current time as whole seconds since the epoch."""
    return int(time.time())


class CacheRecord(SQLModel):
    """
    Bookkeeping columns for offline-first cached entities.

    Fields:
        id: Server-assigned id, or a temp id (``temp_<millis>_<random>``) for
            records created offline that the server has not acknowledged yet
        meta: JSON blob (column ``metadata``) holding the complete server
            record, including fields the local schema does not model
        synced: 1 when the row matches the server, 0 when it holds a local
            mutation waiting in the sync queue
        created_at: Seconds since epoch, set on first write
        updated_at: Seconds since epoch, refreshed on every write

    Usage:
        class MyRow(CacheRecord, table=True):
            __tablename__ = "my_rows"
            name: str
    """

    id: str = Field(primary_key=True, description="Server id or temp id")

    # "metadata" is reserved on SQLModel classes, so the attribute is named meta
    meta: Optional[str] = Field(
        default=None,
        sa_type=Text,
        sa_column_kwargs={"name": "metadata"},
        description="Serialized full server record"
    )

    synced: int = Field(default=0, index=True, description="1 = confirmed on server")

    created_at: int = Field(default_factory=epoch_seconds)
    updated_at: int = Field(default_factory=epoch_seconds)
