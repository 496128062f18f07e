# app/core/background_tasks.py
"""
Background sync scheduling.

One scheduler per domain replays queued mutations on a fixed interval and
immediately when connectivity returns.
"""
import asyncio
import logging
import time
from typing import Callable, Optional

from app.core.config import settings
from app.core.connectivity import ConnectivityMonitor
from app.core.errors import AuthExpiredError

logger = logging.getLogger(__name__)


class SyncLock:
    """
    Guards a domain against overlapping sync passes.

    ``try_acquire`` fails while a pass is running, and for ``min_interval``
    seconds after the previous pass finished.
    """

    def __init__(self, min_interval: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval if min_interval is not None else settings.SYNC_DEBOUNCE_SECONDS
        self.in_progress = False
        self.last_run_at: Optional[float] = None
        self._clock = clock

    def try_acquire(self, ignore_interval: bool = False) -> bool:
        if self.in_progress:
            return False
        if not ignore_interval and self.is_debounced():
            return False
        self.in_progress = True
        return True

    def is_debounced(self) -> bool:
        if self.last_run_at is None or self.min_interval <= 0:
            return False
        return self._clock() - self.last_run_at < self.min_interval

    def release(self):
        self.in_progress = False
        self.last_run_at = self._clock()


class AutoSyncScheduler:
    """
    Periodic ``check_and_sync`` for one service.

    ``start()`` returns a teardown callable; call it (or ``stop()``) on
    shutdown so the timer task and the connectivity listener are removed.
    """

    def __init__(self, service, monitor: Optional[ConnectivityMonitor] = None, interval: Optional[float] = None):
        self.service = service
        self.monitor = monitor
        self.interval = interval or settings.SYNC_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> Callable[[], None]:
        """Start the timer and the reconnect listener."""
        if self._running:
            logger.warning(f"Auto-sync already running for {self._name}")
            return self.stop

        self._running = True
        self._task = asyncio.create_task(self._run())
        if self.monitor is not None:
            self._unsubscribe = self.monitor.on_change(self._on_connectivity_change)

        logger.info(f"Auto-sync started for {self._name} (every {self.interval}s)")
        return self.stop

    def stop(self):
        """Cancel the timer and remove the connectivity listener."""
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        logger.info(f"Auto-sync stopped for {self._name}")

    @property
    def _name(self) -> str:
        return getattr(self.service.mapper, "plural", type(self.service).__name__)

    async def _run(self):
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.tick()
            except asyncio.CancelledError:
                break

    def _on_connectivity_change(self, online: bool):
        if online and self._running:
            logger.info(f"Back online, syncing {self._name}")
            return self.tick()
        return None

    async def tick(self):
        """Run one guarded sync. Errors are logged, never raised."""
        try:
            return await self.service.check_and_sync()
        except AuthExpiredError as e:
            logger.warning(f"Auto-sync for {self._name} skipped: {e.message}")
        except Exception as e:
            logger.error(f"Error in auto-sync for {self._name}: {e}")
        return None
