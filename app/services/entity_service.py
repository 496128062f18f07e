# app/services/entity_service.py
"""
Offline-first entity services.

Reads go to the remote API first and fall back to the local cache. Writes go
through to the API when possible; when the device is offline (or the request
fails at the network level) they are applied locally with ``synced=0`` and
queued for replay.

Queue replay is optimistic and happens in three explicit steps per entry:

1. ``_mark_syncing``   flag the cached row as synced so no other pass picks it up
2. ``_push``           call the remote API
3. ``_commit``         mirror the server result into the cache, or
   ``_revert``         flag the row as unsynced again and classify the failure
"""
import logging
import secrets
import string
import time
from typing import Any, Dict, List, Optional, Set

from app.core.background_tasks import SyncLock
from app.core.config import settings
from app.core.connectivity import ConnectivityMonitor
from app.core.errors import (
    ApiError,
    AuthExpiredError,
    ErrorKind,
    NotFoundError,
    OfflineDataUnavailableError,
    SessionRequiredError,
    SyncError,
    is_auth_error,
    is_network_error,
)
from app.core.session import SessionProvider
from app.database.store import LocalStore
from app.mappers.base import EntityMapper, loads, record_id, strip_local_keys
from app.models.mixins import epoch_seconds
from app.models.sync import EntityType, SyncOperation
from app.schemas.sync import DataSource, ServiceResult, SyncResult
from app.services.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp_"
_TEMP_ID_ALPHABET = string.digits + string.ascii_lowercase

OFFLINE_SYNC_MESSAGE = "Offline - sync will happen when online"
SYNC_IN_PROGRESS_MESSAGE = "Sync already in progress"
SYNC_DEBOUNCED_MESSAGE = "Sync skipped - last sync was too recent"
NOTHING_TO_SYNC_MESSAGE = "No pending items to sync"

# Outcomes of replaying one queue entry
SYNCED = "synced"
FAILED = "failed"
PENDING = "pending"
DISCARDED = "discarded"


def generate_temp_id() -> str:
    """Client-side placeholder id: ``temp_<millis>_<9 base36 chars>``."""
    suffix = "".join(secrets.choice(_TEMP_ID_ALPHABET) for _ in range(9))
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}_{suffix}"


def is_temp_id(entity_id: Any) -> bool:
    return isinstance(entity_id, str) and entity_id.startswith(TEMP_ID_PREFIX)


def unwrap(response: Any) -> Any:
    """Strip the ``{"data": ...}`` envelope."""
    if isinstance(response, dict) and "data" in response:
        return response["data"]
    return response


def as_list(value: Any) -> List[Dict[str, Any]]:
    return value if isinstance(value, list) else []


class CachedEntityService:
    """
    Read side: remote-first reads with cache fallback.

    Subclasses set ``mapper`` and, when the table has them, ``parent_column``
    (self-referencing hierarchy) and ``tombstone_column`` (soft deletes).
    """

    mapper: EntityMapper
    entity_type: Optional[EntityType] = None
    parent_column: Optional[str] = None
    tombstone_column: Optional[str] = "status"

    def __init__(
        self,
        api,
        store: LocalStore,
        session: SessionProvider,
        monitor: Optional[ConnectivityMonitor] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.api = api
        self.store = store
        self.session = session
        self.monitor = monitor
        self.event_bus = event_bus

    @property
    def table(self) -> str:
        return self.mapper.table

    def is_online(self) -> bool:
        return self.monitor is None or self.monitor.is_online()

    async def _ready(self):
        await self.store.wait_until_ready()

    def _require_session(self):
        if not self.session.is_authenticated():
            raise SessionRequiredError()

    def _is_tombstone(self, row: Dict[str, Any]) -> bool:
        return bool(self.tombstone_column) and row.get(self.tombstone_column) == "deleted"

    def _unavailable(self) -> OfflineDataUnavailableError:
        return OfflineDataUnavailableError(
            f"Unable to load {self.mapper.plural}. "
            "Please connect to the internet to download data for offline use."
        )

    # ===========================
    # Reads
    # ===========================

    async def get_all(self, params: Optional[Dict[str, Any]] = None) -> ServiceResult:
        """
        Fetch every record, remote first.

        An unfiltered listing replaces the cached table (rows holding local
        changes are kept); a filtered listing is cached additively.

        Raises:
            AuthExpiredError: never answered from the cache
            OfflineDataUnavailableError: remote failed and the cache is empty
        """
        await self._ready()

        if self.is_online():
            try:
                records = as_list(unwrap(await self.api.get_all(params)))
            except SyncError as e:
                if is_auth_error(e):
                    raise
                logger.warning(f"Failed to fetch {self.mapper.plural} from API, loading from cache: {e.message}")
            else:
                await self.cache_records(records, clear_existing=not params)
                return ServiceResult(data=await self._with_local_changes(records), source=DataSource.API)

        cached = await self.get_cached()
        if not cached:
            raise self._unavailable()
        return ServiceResult(data=cached, source=DataSource.CACHE, offline=True)

    async def get_one(self, entity_id: str) -> ServiceResult:
        await self._ready()

        if self.is_online() and not is_temp_id(entity_id):
            try:
                record = unwrap(await self.api.get_one(entity_id))
            except SyncError as e:
                if is_auth_error(e):
                    raise
                logger.warning(f"Failed to fetch {self.mapper.label} {entity_id} from API: {e.message}")
            else:
                if isinstance(record, dict) and record_id(record):
                    await self.cache_records([record])
                local = await self.store.get_by_id(self.table, entity_id)
                if local is not None and local.get("synced") == 0:
                    # Same view get_all gives: unsynced local changes win
                    if self._is_tombstone(local):
                        raise OfflineDataUnavailableError(f"{self.mapper.label.capitalize()} not found")
                    record = self.mapper.from_local_row(local)
                return ServiceResult(data=record, source=DataSource.API)

        row = await self.store.get_by_id(self.table, entity_id)
        if row is None or self._is_tombstone(row):
            raise OfflineDataUnavailableError(f"{self.mapper.label.capitalize()} not found")
        return ServiceResult(data=self.mapper.from_local_row(row), source=DataSource.CACHE, offline=True)

    async def get_cached(self) -> List[Dict[str, Any]]:
        """Every cached record except pending deletions, newest first."""
        if self.tombstone_column:
            rows = await self.store.get_all(
                self.table,
                f"{self.tombstone_column} IS NULL OR {self.tombstone_column} != ?",
                ["deleted"],
                order_by="updated_at DESC",
            )
        else:
            rows = await self.store.get_all(self.table, order_by="updated_at DESC")
        return self.mapper.from_local_rows(rows)

    async def _pending_rows(self) -> List[Dict[str, Any]]:
        return await self.store.get_all(self.table, "synced = ?", [0])

    async def _pending_ids(self) -> Set[str]:
        return {row["id"] for row in await self._pending_rows()}

    async def _with_local_changes(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Overlay rows the server has not seen yet onto a fresh listing."""
        local = {row["id"]: row for row in await self._pending_rows()}
        if not local:
            return records

        merged = []
        for record in records:
            row = local.pop(record_id(record), None)
            if row is None:
                merged.append(record)
            elif not self._is_tombstone(row):
                merged.append(self.mapper.from_local_row(row))

        merged.extend(self.mapper.from_local_row(row) for row in local.values() if not self._is_tombstone(row))
        return merged

    # ===========================
    # Cache maintenance
    # ===========================

    async def cache_records(self, records: List[Dict[str, Any]], clear_existing: bool = False) -> int:
        """
        Mirror server records into the cache.

        Records whose cached row holds unsynced local changes are skipped so
        a refresh never overwrites pending work. An empty listing leaves the
        cache untouched.

        Returns:
            Number of rows written
        """
        if not records:
            return 0

        rows = self.mapper.to_local_rows(records)
        pending_ids = await self._pending_ids()
        fresh = [row for row in rows if row["id"] not in pending_ids]
        if len(fresh) < len(rows):
            logger.info(f"Kept {len(rows) - len(fresh)} {self.mapper.plural} with unsynced local changes")
        await self._keep_cached_timestamps(fresh)

        written = await self.store.bulk_load(
            self.table,
            fresh,
            parent_column=self.parent_column,
            clear_existing=clear_existing,
        )
        logger.info(f"Cached {written} {self.mapper.plural}")
        return written

    async def _keep_cached_timestamps(self, rows: List[Dict[str, Any]]):
        """Reuse cached stamps for records the server sent without them."""
        missing = [row["id"] for row in rows if "created_at" not in row or "updated_at" not in row]
        if not missing:
            return

        placeholders = ", ".join("?" for _ in missing)
        cached = await self.store.select_query(
            f"SELECT id, created_at, updated_at FROM {self.table} WHERE id IN ({placeholders})", missing
        )
        stamps = {row["id"]: row for row in cached}
        for row in rows:
            existing = stamps.get(row["id"])
            if existing is not None:
                row.setdefault("created_at", existing["created_at"])
                row.setdefault("updated_at", existing["updated_at"])

    async def has_cached_data(self) -> bool:
        await self._ready()
        return await self.store.count(self.table) > 0

    async def get_cache_info(self) -> Dict[str, Any]:
        await self._ready()
        rows = await self.store.select_query(
            f"SELECT COUNT(*) AS count, MAX(updated_at) AS last_update FROM {self.table}"
        )
        info = rows[0] if rows else {}
        return {"count": info.get("count") or 0, "last_update": info.get("last_update")}

    async def clear_cache(self):
        await self._ready()
        await self.store.execute_query(f"DELETE FROM {self.table}")
        logger.info(f"Cleared cached {self.mapper.plural}")

    async def _publish(self, event_type: EventType, data: Dict[str, Any]):
        if self.event_bus is not None:
            await self.event_bus.publish(event_type, data)


class SyncingEntityService(CachedEntityService):
    """
    Queue replay for one domain.

    Entries are processed sequentially; the ``SyncLock`` keeps two passes of
    the same domain from overlapping.
    """

    def __init__(
        self,
        api,
        store: LocalStore,
        session: SessionProvider,
        monitor: Optional[ConnectivityMonitor] = None,
        event_bus: Optional[EventBus] = None,
        sync_debounce: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        super().__init__(api, store, session, monitor=monitor, event_bus=event_bus)
        self.sync_lock = SyncLock(sync_debounce)
        self.max_retries = max_retries if max_retries is not None else settings.SYNC_MAX_RETRIES

    @property
    def is_syncing(self) -> bool:
        return self.sync_lock.in_progress

    async def get_pending_count(self) -> int:
        await self._ready()
        return await self.store.count_pending(self.entity_type)

    async def check_and_sync(self) -> SyncResult:
        """Run ``sync_pending`` only when online and something is queued."""
        await self._ready()

        if not self.is_online():
            return SyncResult(pending=await self.get_pending_count(), message=OFFLINE_SYNC_MESSAGE, offline=True)

        if await self.get_pending_count() == 0:
            return SyncResult(message=NOTHING_TO_SYNC_MESSAGE)

        return await self.sync_pending()

    async def sync_pending(self, force: bool = False) -> SyncResult:
        """
        Replay this domain's queued mutations.

        Args:
            force: Ignore the debounce window (a pass already running still wins)

        Raises:
            AuthExpiredError: the affected row is reverted and the lock released first
        """
        await self._ready()

        if not self.is_online():
            return SyncResult(pending=await self.get_pending_count(), message=OFFLINE_SYNC_MESSAGE, offline=True)

        if not self.sync_lock.try_acquire(ignore_interval=force):
            message = SYNC_IN_PROGRESS_MESSAGE if self.sync_lock.in_progress else SYNC_DEBOUNCED_MESSAGE
            logger.info(f"{message} ({self.mapper.plural})")
            return SyncResult(synced=0, message=message)

        result = SyncResult()
        try:
            entries = await self.store.get_pending_sync_items(self.entity_type)
            if entries:
                logger.info(f"Syncing {len(entries)} pending {self.mapper.plural}")

            for entry in entries:
                outcome = await self._sync_entry(entry)
                if outcome == SYNCED:
                    result.synced += 1
                elif outcome == FAILED:
                    result.failed += 1

            result.pending = await self.store.count_pending(self.entity_type)
        except AuthExpiredError as e:
            await self._publish(EventType.SYNC_FAILED, {"entity_type": self._entity_type_value, "error": e.message})
            raise
        finally:
            self.sync_lock.release()

        result.message = f"Synced {result.synced} {self.mapper.plural}"
        if result.failed:
            result.message += f", {result.failed} failed"
        logger.info(result.message)

        await self._publish(EventType.SYNC_COMPLETED, {
            "entity_type": self._entity_type_value,
            "synced": result.synced,
            "failed": result.failed,
            "pending": result.pending,
        })
        return result

    @property
    def _entity_type_value(self) -> Optional[str]:
        return self.entity_type.value if self.entity_type else None

    def _requires_row(self, operation: str) -> bool:
        return operation != SyncOperation.DELETE.value

    async def _sync_entry(self, entry: Dict[str, Any]) -> str:
        entity_id = entry["entity_id"]
        operation = entry["operation"]
        data = loads(entry["data"], {}, entity_id)

        row = await self.store.get_by_id(self.table, entity_id)
        if row is None and self._requires_row(operation):
            logger.warning(f"Discarding queued {operation} for missing {self.mapper.label} {entity_id}")
            await self.store.remove_from_sync_queue(entry["id"])
            return DISCARDED

        payload = self.mapper.to_api_payload(row) if row is not None else data

        await self._mark_syncing(row)
        try:
            response = await self._push(operation, entity_id, payload, data)
        except SyncError as e:
            if self._already_gone(operation, e):
                logger.info(f"{self.mapper.label.capitalize()} {entity_id} already deleted on server")
                response = None
            else:
                await self._revert(row)
                return await self._classify_failure(entry, e)

        await self._commit(entry, row, response, data)
        return SYNCED

    @staticmethod
    def _already_gone(operation: str, error: SyncError) -> bool:
        return (
            operation == SyncOperation.DELETE.value
            and isinstance(error, ApiError)
            and error.kind not in (ErrorKind.AUTH, ErrorKind.NETWORK)
            and error.is_not_found
        )

    async def _classify_failure(self, entry: Dict[str, Any], error: SyncError) -> str:
        label = f"{self.mapper.label} {entry['entity_id']}"

        if is_auth_error(error):
            logger.warning(f"Authentication expired while syncing {label}")
            raise error

        if is_network_error(error):
            logger.info(f"Network unavailable while syncing {label}, will retry")
            return PENDING

        retries = await self.store.increment_retry(entry["id"])
        if retries >= self.max_retries:
            logger.error(f"Dropping queued {entry['operation']} for {label} after {retries} failed attempts: {error.message}")
            await self.store.remove_from_sync_queue(entry["id"])
            await self._release(entry)
        else:
            logger.warning(f"Failed to sync {label} (attempt {retries}/{self.max_retries}): {error.message}")
        return FAILED

    async def _release(self, entry: Dict[str, Any]):
        """
        Give up the local change of a dropped entry so the next refresh can
        replace the row: unsynced creates are removed, tombstones are lifted
        and edited rows are handed back to the server copy.
        """
        entity_id = entry["entity_id"]
        row = await self.store.get_by_id(self.table, entity_id)
        if row is None:
            return

        if is_temp_id(entity_id):
            await self.store.delete(self.table, entity_id)
            logger.info(f"Removed unsynced {self.mapper.label} {entity_id}")
            return

        changes = {"synced": 1}
        if self._is_tombstone(row):
            changes[self.tombstone_column] = self.mapper.metadata_of(row).get(self.tombstone_column) or "draft"
        await self.store.update(self.table, entity_id, changes)

    # Phase 1

    async def _mark_syncing(self, row: Optional[Dict[str, Any]]):
        if row is not None:
            await self.store.update(self.table, row["id"], {"synced": 1, "updated_at": row["updated_at"]})

    # Phase 2

    async def _push(self, operation: str, entity_id: str, payload: Dict[str, Any], data: Dict[str, Any]) -> Any:
        if operation == SyncOperation.CREATE.value:
            return unwrap(await self.api.create(payload))
        if operation == SyncOperation.UPDATE.value:
            return unwrap(await self.api.update(entity_id, payload))
        if operation == SyncOperation.DELETE.value:
            await self.api.delete(entity_id)
            return None
        raise ValueError(f"Unsupported sync operation for {self.mapper.plural}: {operation}")

    # Phase 3

    async def _revert(self, row: Optional[Dict[str, Any]]):
        if row is None:
            return
        try:
            await self.store.update(self.table, row["id"], {"synced": 0, "updated_at": row["updated_at"]})
        except NotFoundError:
            logger.warning(f"{self.mapper.label.capitalize()} {row['id']} vanished before it could be reverted")

    async def _commit(self, entry: Dict[str, Any], row: Optional[Dict[str, Any]], response: Any, data: Dict[str, Any]):
        entity_id = entry["entity_id"]
        operation = entry["operation"]

        if operation == SyncOperation.CREATE.value:
            current = await self.store.get_by_id("sync_queue", entry["id"])
            edited = current is not None and current["data"] != entry["data"]
            local = await self.store.get_by_id(self.table, entity_id) if edited else None

            # The temp record goes first so the listing never shows both ids
            await self.store.delete(self.table, entity_id)
            await self.store.remove_from_sync_queue(entry["id"])
            if not (isinstance(response, dict) and record_id(response)):
                logger.warning(f"Server returned no record for created {self.mapper.label} {entity_id}")
                return

            server_row = self.mapper.to_local_row(response, synced=1)
            if local is None:
                await self.store.upsert(self.table, server_row)
                logger.info(f"Created {self.mapper.label} {server_row['id']} (was {entity_id})")
                return

            # Edited while the create was in flight; the edit moves to the server id
            merged = strip_local_keys({**self.mapper.from_local_row(server_row), **self.mapper.from_local_row(local)})
            await self.store.upsert(self.table, self.mapper.to_offline_row(merged, server_row["id"]))
            await self.store.enqueue(
                self.entity_type, server_row["id"], SyncOperation.UPDATE, loads(current["data"], {}, entity_id)
            )
            logger.info(f"Created {self.mapper.label} {server_row['id']} (was {entity_id}), newer edit queued")

        elif operation == SyncOperation.UPDATE.value:
            current = await self.store.get_by_id("sync_queue", entry["id"])
            if current is not None and current["data"] != entry["data"]:
                # Edited again while this entry was in flight; the newer edit stays queued
                await self._revert(row)
                return
            await self.store.remove_from_sync_queue(entry["id"])
            if isinstance(response, dict) and record_id(response):
                await self.store.upsert(self.table, self.mapper.to_local_row(response, synced=1))

        elif operation == SyncOperation.DELETE.value:
            await self.store.delete(self.table, entity_id)
            await self.store.remove_queue_entries(self.entity_type, entity_id)


class OfflineEntityService(SyncingEntityService):
    """
    Mutation side: write-through when online, local write plus queue entry
    when offline or when the request fails at the network level.
    """

    async def create(self, payload: Dict[str, Any]) -> ServiceResult:
        await self._ready()
        self._require_session()

        if self.is_online():
            try:
                record = unwrap(await self.api.create(payload))
            except SyncError as e:
                if not is_network_error(e):
                    raise
                logger.warning(f"Network error creating {self.mapper.label}, saving offline")
            else:
                if isinstance(record, dict) and record_id(record):
                    await self.store.upsert(self.table, self.mapper.to_local_row(record, synced=1))
                return ServiceResult(data=record, source=DataSource.API)

        return await self._create_offline(payload)

    async def _create_offline(self, payload: Dict[str, Any]) -> ServiceResult:
        temp_id = generate_temp_id()
        await self.store.insert(self.table, self.mapper.to_offline_row(payload, temp_id))
        await self.store.enqueue(self.entity_type, temp_id, SyncOperation.CREATE, strip_local_keys(payload))
        logger.info(f"Saved {self.mapper.label} {temp_id} offline")

        data = {**payload, "id": temp_id, "_id": temp_id, "_offline": True, "_pendingSync": True}
        return ServiceResult(data=data, source=DataSource.OFFLINE, offline=True, pending_sync=True)

    async def update(self, entity_id: str, payload: Dict[str, Any]) -> ServiceResult:
        await self._ready()
        self._require_session()

        if self.is_online() and not is_temp_id(entity_id):
            try:
                record = unwrap(await self.api.update(entity_id, payload))
            except SyncError as e:
                if not is_network_error(e):
                    raise
                logger.warning(f"Network error updating {self.mapper.label} {entity_id}, saving offline")
            else:
                if isinstance(record, dict) and record_id(record):
                    await self.store.upsert(self.table, self.mapper.to_local_row(record, synced=1))
                queued = await self.store.get_queue_entry(self.entity_type, entity_id)
                if queued and queued["operation"] == SyncOperation.UPDATE.value:
                    await self.store.remove_from_sync_queue(queued["id"])
                return ServiceResult(data=record, source=DataSource.API)

        return await self._update_offline(entity_id, payload)

    async def _update_offline(self, entity_id: str, payload: Dict[str, Any]) -> ServiceResult:
        existing = await self.store.get_by_id(self.table, entity_id)
        if existing is None:
            raise NotFoundError(self.table, entity_id)

        merged = strip_local_keys({**self.mapper.from_local_row(existing), **payload})
        row = self.mapper.to_offline_row(merged, entity_id)
        row["created_at"] = existing["created_at"]
        row["updated_at"] = epoch_seconds()
        await self.store.update(self.table, entity_id, row)

        operation = SyncOperation.CREATE if is_temp_id(entity_id) else SyncOperation.UPDATE
        await self.store.enqueue(self.entity_type, entity_id, operation, strip_local_keys(payload))
        logger.info(f"Saved changes to {self.mapper.label} {entity_id} offline")

        data = {**merged, "id": entity_id, "_id": entity_id, "_offline": True, "_pendingSync": True}
        return ServiceResult(data=data, source=DataSource.OFFLINE, offline=True, pending_sync=True)

    async def delete(self, entity_id: str) -> ServiceResult:
        await self._ready()
        self._require_session()

        if is_temp_id(entity_id):
            # The server has never seen this record
            await self.store.delete(self.table, entity_id)
            await self.store.remove_queue_entries(self.entity_type, entity_id)
            logger.info(f"Discarded unsynced {self.mapper.label} {entity_id}")
            return ServiceResult(
                data={"id": entity_id, "deleted": True},
                source=DataSource.OFFLINE,
                offline=not self.is_online(),
            )

        if self.is_online():
            try:
                await self.api.delete(entity_id)
            except SyncError as e:
                if not is_network_error(e):
                    raise
                logger.warning(f"Network error deleting {self.mapper.label} {entity_id}, saving offline")
            else:
                await self.store.delete(self.table, entity_id)
                await self.store.remove_queue_entries(self.entity_type, entity_id)
                return ServiceResult(data={"id": entity_id, "deleted": True}, source=DataSource.API)

        return await self._delete_offline(entity_id)

    async def _delete_offline(self, entity_id: str) -> ServiceResult:
        existing = await self.store.get_by_id(self.table, entity_id)
        if existing is not None and self.tombstone_column:
            await self.store.update(self.table, entity_id, {self.tombstone_column: "deleted", "synced": 0})
        else:
            await self.store.delete(self.table, entity_id)

        await self.store.enqueue(self.entity_type, entity_id, SyncOperation.DELETE, {"id": entity_id})
        logger.info(f"Marked {self.mapper.label} {entity_id} for deletion")

        return ServiceResult(
            data={"id": entity_id, "deleted": True, "_pendingSync": True},
            source=DataSource.OFFLINE,
            offline=True,
            pending_sync=True,
        )
