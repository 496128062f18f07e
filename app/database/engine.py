from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel.pool import StaticPool
from typing import Optional

from app.core.config import settings


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create the async engine backing the local cache.

    In-memory databases get a StaticPool so every session sees the same data.
    """
    url = database_url or settings.database_url
    kwargs = {"echo": settings.DB_ECHO if echo is None else echo}

    if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}

    engine = create_async_engine(url, **kwargs)
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    return engine
