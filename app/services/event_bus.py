# app/services/event_bus.py
"""
In-process event bus for cross-module communication.
Lets the host application react to sync results, connectivity changes and
session expiry without the sync services knowing who is listening.
"""
import inspect
import logging
from typing import Callable, Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Supported event types for the application."""
    # Sync events
    SYNC_COMPLETED = "sync.completed"
    SYNC_FAILED = "sync.failed"

    # System events
    CONNECTIVITY_CHANGED = "connectivity.changed"
    SESSION_EXPIRED = "session.expired"


class EventBus:
    """
    Event bus for publishing and subscribing to application events.
    Subscribers may be plain functions or coroutine functions.
    """

    def __init__(self):
        self.subscribers: Dict[EventType, list] = {}

    async def publish(self, event_type: EventType, data: Dict[str, Any]):
        """
        Publish an event to all subscribers.

        Args:
            event_type: Type of event being published
            data: Event payload data
        """
        event_payload = {
            "event_type": event_type.value,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        for callback in list(self.subscribers.get(event_type, [])):
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(event_payload)
                else:
                    callback(event_payload)
            except Exception as e:
                logger.error(f"Error in event subscriber for {event_type.value}: {e}")

    def subscribe(self, event_type: EventType, callback: Callable):
        """
        Subscribe to an event type with a callback function.

        Args:
            event_type: Event type to subscribe to
            callback: Function to call when event is published (sync or async)
        """
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)
        logger.debug(f"Subscribed to event {event_type.value}")

    def unsubscribe(self, event_type: EventType, callback: Callable):
        """Unsubscribe a callback from an event type."""
        if event_type in self.subscribers and callback in self.subscribers[event_type]:
            self.subscribers[event_type].remove(callback)
            logger.debug(f"Unsubscribed from event {event_type.value}")


# Global event bus instance (will be initialized in main.py)
event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    if event_bus is None:
        raise RuntimeError("EventBus not initialized. Create it during application startup.")
    return event_bus
