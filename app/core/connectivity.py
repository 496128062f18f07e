# app/core/connectivity.py
"""
Network reachability tracking.

The monitor holds a boolean snapshot that platform integrations (or the
periodic HTTP probe) update. Listeners only hear about transitions, so a
reconnect fires exactly one callback per listener.
"""
import asyncio
import inspect
import logging
from typing import Callable, List, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Edge-triggered online/offline state with optional HTTP probing."""

    def __init__(
        self,
        initially_online: bool = True,
        probe_url: Optional[str] = None,
        probe_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._online = initially_online
        self.probe_url = probe_url or settings.CONNECTIVITY_PROBE_URL
        self.probe_timeout = probe_timeout if probe_timeout is not None else settings.CONNECTIVITY_PROBE_TIMEOUT_SECONDS
        self._transport = transport
        self._listeners: List[Callable[[bool], object]] = []
        self._pending: set = set()
        self._task: Optional[asyncio.Task] = None

    def is_online(self) -> bool:
        return self._online

    def on_change(self, callback: Callable[[bool], object]) -> Callable[[], None]:
        """
        Subscribe to online/offline transitions.

        Args:
            callback: Called with the new state; may be a coroutine function

        Returns:
            Callable that removes the subscription
        """
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Record the current state, notifying listeners only when it changes."""
        online = bool(online)
        if online == self._online:
            return

        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")

        for callback in list(self._listeners):
            try:
                result = callback(online)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception as e:
                logger.error(f"Error in connectivity listener: {e}")

    def _listener_done(self, task: asyncio.Future):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in connectivity listener: {error}")

    async def check_connectivity(self) -> bool:
        """Probe the API host and update the snapshot."""
        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout, transport=self._transport) as client:
                await client.head(self.probe_url)
            online = True
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        self.set_online(online)
        return online

    async def start_monitoring(self, interval: Optional[float] = None):
        """Start probing periodically in the background."""
        if self._task and not self._task.done():
            logger.warning("Connectivity monitoring already running")
            return

        interval = interval or settings.CONNECTIVITY_CHECK_INTERVAL_SECONDS
        await self.check_connectivity()
        self._task = asyncio.create_task(self._monitor_loop(interval))
        logger.info(f"Connectivity monitoring started (every {interval}s)")

    async def _monitor_loop(self, interval: float):
        while True:
            try:
                await asyncio.sleep(interval)
                await self.check_connectivity()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in connectivity monitor: {e}")

    async def stop_monitoring(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Connectivity monitoring stopped")

    async def drain(self):
        """Wait for listener coroutines scheduled by past transitions."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# Global monitor instance (initialized in main.py lifespan)
connectivity_monitor: Optional[ConnectivityMonitor] = None
