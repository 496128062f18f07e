# app/database/store.py
"""
Local cache store.

A thin async table store over SQLite. Rows go in and come out as plain dicts
keyed by column name; services never touch SQLAlchemy sessions directly.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import Table, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import SQLModel

from app.core.config import settings
from app.core.errors import ConstraintError, NotFoundError, StoreNotReadyError
from app.database.engine import create_engine
from app.models import TABLE_MODELS, SyncOperation
from app.models.mixins import epoch_seconds

logger = logging.getLogger(__name__)

Params = Union[Sequence[Any], Dict[str, Any], None]


def _value(item: Any) -> Any:
    """Unwrap str enums so they are stored as their plain value."""
    return getattr(item, "value", item)


def _driver_params(params: Params):
    # exec_driver_sql reads a list as executemany, so positional args go as a tuple
    if params is None:
        return ()
    if isinstance(params, dict):
        return params
    return tuple(_value(param) for param in params)


class LocalStore:
    """
    Durable per-entity row storage.

    Must be initialized once per process before use; every caller waits on
    the ready gate instead of failing when it races the bootstrap.
    """

    def __init__(
        self,
        engine: Optional[AsyncEngine] = None,
        database_url: Optional[str] = None,
        ready_timeout: Optional[float] = None,
    ):
        self.engine = engine or create_engine(database_url)
        self.ready_timeout = ready_timeout if ready_timeout is not None else settings.STORE_READY_TIMEOUT_SECONDS
        self._ready = asyncio.Event()
        self._init_lock = asyncio.Lock()

    # ===========================
    # Lifecycle
    # ===========================

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def initialize(self):
        """Create tables and indexes. Safe to call any number of times."""
        if self._ready.is_set():
            return

        async with self._init_lock:
            if self._ready.is_set():
                return

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
                await conn.run_sync(self._add_missing_columns)

            self._ready.set()
            logger.info("Local store initialized")

    @staticmethod
    def _add_missing_columns(sync_conn):
        """Additive migrations for databases created by older app versions."""
        inspector = inspect(sync_conn)
        for table in SQLModel.metadata.sorted_tables:
            existing = {column["name"] for column in inspector.get_columns(table.name)}
            for column in table.columns:
                if column.name in existing:
                    continue
                if not column.nullable:
                    logger.warning(f"Cannot add NOT NULL column {table.name}.{column.name} to an existing table")
                    continue
                column_type = column.type.compile(dialect=sync_conn.dialect)
                sync_conn.exec_driver_sql(
                    f'ALTER TABLE {table.name} ADD COLUMN "{column.name}" {column_type}'
                )
                logger.info(f"Added column {table.name}.{column.name}")

    async def wait_until_ready(self, timeout: Optional[float] = None):
        """Block until initialize() has completed."""
        if self._ready.is_set():
            return

        timeout = timeout if timeout is not None else self.ready_timeout
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            raise StoreNotReadyError("Local store was not initialized in time")

    async def close(self):
        await self.engine.dispose()
        self._ready.clear()
        logger.info("Local store closed")

    async def clear_all_data(self):
        """Remove every cached row and pending mutation (logout)."""
        async with self.engine.begin() as conn:
            for table in reversed(SQLModel.metadata.sorted_tables):
                await conn.execute(table.delete())
        logger.info("Cleared all local data")

    # ===========================
    # Helpers
    # ===========================

    @staticmethod
    def _table(name: str) -> Table:
        table = SQLModel.metadata.tables.get(name)
        if table is None:
            raise ValueError(f"Unknown table: {name}")
        return table

    @staticmethod
    def _defaults(table: Table) -> Dict[str, Any]:
        model = TABLE_MODELS.get(table.name)
        if model is None:
            return {}

        defaults = {}
        for field_name, field in model.model_fields.items():
            if field_name not in table.columns or field.is_required():
                continue
            default = field.get_default(call_default_factory=True)
            if default is not None:
                defaults[field_name] = default
        return defaults

    def _prepare(self, table: Table, row: Dict[str, Any], for_insert: bool = False) -> Dict[str, Any]:
        unknown = set(row) - set(table.columns.keys())
        if unknown:
            raise ValueError(f"Unknown columns for {table.name}: {sorted(unknown)}")

        values = {key: _value(value) for key, value in row.items()}
        if for_insert:
            for key, default in self._defaults(table).items():
                values.setdefault(key, default)
        return values

    # ===========================
    # Row operations
    # ===========================

    async def insert(self, table: str, row: Dict[str, Any]) -> Any:
        """
        Insert a row.

        Raises:
            ConstraintError: a row with the same primary key already exists
        """
        tbl = self._table(table)
        values = self._prepare(tbl, row, for_insert=True)

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(tbl.insert().values(values))
                inserted = result.inserted_primary_key
        except IntegrityError as e:
            raise ConstraintError(table, values.get("id"), str(e.orig)) from e

        if values.get("id") is not None:
            return values["id"]
        return inserted[0] if inserted else None

    async def update(self, table: str, entity_id: Any, data: Dict[str, Any]) -> bool:
        """
        Update columns of an existing row.

        Raises:
            NotFoundError: no row with this id exists
        """
        tbl = self._table(table)
        values = self._prepare(tbl, data)
        values.pop("id", None)
        if "updated_at" in tbl.columns and "updated_at" not in values:
            values["updated_at"] = epoch_seconds()

        if not values:
            if await self.get_by_id(table, entity_id) is None:
                raise NotFoundError(table, str(entity_id))
            return True

        async with self.engine.begin() as conn:
            result = await conn.execute(
                tbl.update().where(tbl.c.id == entity_id).values(values)
            )
            rowcount = result.rowcount

        if rowcount == 0:
            raise NotFoundError(table, str(entity_id))
        return True

    async def upsert(self, table: str, row: Dict[str, Any]) -> None:
        """Insert, falling back to update when the row already exists."""
        try:
            await self.insert(table, row)
        except ConstraintError:
            await self.update(table, row["id"], row)

    async def delete(self, table: str, entity_id: Any) -> bool:
        """Delete a row. Deleting a missing id is not an error."""
        tbl = self._table(table)
        async with self.engine.begin() as conn:
            await conn.execute(tbl.delete().where(tbl.c.id == entity_id))
        return True

    async def get_by_id(self, table: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        rows = await self.select_query(f"SELECT * FROM {self._table(table).name} WHERE id = ? LIMIT 1", [entity_id])
        return rows[0] if rows else None

    async def get_all(
        self,
        table: str,
        where: Optional[str] = None,
        params: Params = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Get all rows, optionally filtered by a raw WHERE clause with ? placeholders."""
        sql = f"SELECT * FROM {self._table(table).name}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        return await self.select_query(sql, params)

    async def count(self, table: str, where: Optional[str] = None, params: Params = None) -> int:
        sql = f"SELECT COUNT(*) AS count FROM {self._table(table).name}"
        if where:
            sql += f" WHERE {where}"
        rows = await self.select_query(sql, params)
        return rows[0]["count"] if rows else 0

    async def execute_query(self, sql: str, params: Params = None) -> int:
        """Run a raw write statement. Returns the affected row count."""
        async with self.engine.begin() as conn:
            result = await conn.exec_driver_sql(sql, _driver_params(params))
            return result.rowcount

    async def select_query(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        """Run a raw SELECT and return rows as dicts."""
        async with self.engine.connect() as conn:
            result = await conn.exec_driver_sql(sql, _driver_params(params))
            return [dict(row._mapping) for row in result]

    async def bulk_load(
        self,
        table: str,
        rows: List[Dict[str, Any]],
        parent_column: Optional[str] = None,
        clear_existing: bool = False,
        preserve_unsynced: bool = True,
    ) -> int:
        """
        Load many rows at once with INSERT OR REPLACE semantics.

        Foreign keys are switched off for the duration so hierarchical rows can
        arrive in any order. Afterwards any ``parent_column`` value pointing at
        a row that does not exist is set to NULL.

        Args:
            table: Target table
            rows: Rows to load
            parent_column: Self-referencing column to repair after the load
            clear_existing: Wipe the table first
            preserve_unsynced: When wiping, keep rows that hold local changes

        Returns:
            Number of rows written
        """
        tbl = self._table(table)
        prepared = [self._prepare(tbl, row, for_insert=True) for row in rows]

        async with self.engine.connect() as conn:
            await conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            await conn.commit()
            try:
                async with conn.begin():
                    if clear_existing:
                        if preserve_unsynced and "synced" in tbl.columns:
                            await conn.execute(tbl.delete().where(tbl.c.synced == 1))
                        else:
                            await conn.execute(tbl.delete())

                    statement = tbl.insert().prefix_with("OR REPLACE")
                    for values in prepared:
                        await conn.execute(statement.values(values))

                    if parent_column:
                        result = await conn.exec_driver_sql(
                            f"UPDATE {tbl.name} SET {parent_column} = NULL "
                            f"WHERE {parent_column} IS NOT NULL "
                            f"AND {parent_column} NOT IN (SELECT id FROM {tbl.name})"
                        )
                        detached = result.rowcount
                        if detached:
                            logger.info(f"Detached {detached} {tbl.name} row(s) whose parent is missing")
            finally:
                await conn.exec_driver_sql("PRAGMA foreign_keys=ON")
                await conn.commit()

        return len(prepared)

    # ===========================
    # Sync queue
    # ===========================

    async def get_queue_entry(self, entity_type: Any, entity_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.select_query(
            "SELECT * FROM sync_queue WHERE entity_type = ? AND entity_id = ? ORDER BY id LIMIT 1",
            [_value(entity_type), entity_id],
        )
        return rows[0] if rows else None

    async def enqueue(self, entity_type: Any, entity_id: str, operation: Any, data: Any) -> int:
        """
        Add a pending mutation, or refresh the one already queued for this entity.

        A queued create stays a create when the same record is edited again,
        since the server has still never seen it.
        """
        entity_type = _value(entity_type)
        operation = _value(operation)
        payload = json.dumps(data, default=str)

        existing = await self.get_queue_entry(entity_type, entity_id)
        if existing:
            if existing["operation"] == SyncOperation.CREATE.value and operation == SyncOperation.UPDATE.value:
                operation = SyncOperation.CREATE.value
            await self.execute_query(
                "UPDATE sync_queue SET operation = ?, data = ?, retry_count = 0 WHERE id = ?",
                [operation, payload, existing["id"]],
            )
            logger.debug(f"Refreshed queued {operation} for {entity_type} {entity_id}")
            return existing["id"]

        queue_id = await self.insert("sync_queue", {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "data": payload,
        })
        logger.debug(f"Queued {operation} for {entity_type} {entity_id}")
        return queue_id

    async def get_pending_sync_items(self, entity_type: Any = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        limit = limit or settings.SYNC_BATCH_LIMIT
        if entity_type is None:
            return await self.select_query(
                "SELECT * FROM sync_queue ORDER BY created_at ASC, id ASC LIMIT ?", [limit]
            )
        return await self.select_query(
            "SELECT * FROM sync_queue WHERE entity_type = ? ORDER BY created_at ASC, id ASC LIMIT ?",
            [_value(entity_type), limit],
        )

    async def count_pending(self, entity_type: Any = None) -> int:
        if entity_type is None:
            return await self.count("sync_queue")
        return await self.count("sync_queue", "entity_type = ?", [_value(entity_type)])

    async def remove_from_sync_queue(self, queue_id: int):
        await self.delete("sync_queue", queue_id)

    async def remove_queue_entries(self, entity_type: Any, entity_id: str) -> int:
        return await self.execute_query(
            "DELETE FROM sync_queue WHERE entity_type = ? AND entity_id = ?",
            [_value(entity_type), entity_id],
        )

    async def increment_retry(self, queue_id: int) -> int:
        await self.execute_query(
            "UPDATE sync_queue SET retry_count = retry_count + 1 WHERE id = ?", [queue_id]
        )
        entry = await self.get_by_id("sync_queue", queue_id)
        return entry["retry_count"] if entry else 0


# Global store instance (initialized in main.py lifespan)
local_store: Optional[LocalStore] = None
