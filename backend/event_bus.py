"""
Event Bus - In-process event coordination

This module provides a central event bus that:
1. Receives container reports from the update checker
2. Dispatches them to subscribers (triggers) in ascending order
3. Isolates subscribers from each other's failures

Events flow: UpdateChecker → EventBus → [Triggers, Subscribers]
"""

import logging
from typing import Dict, Any, Optional, List, Callable, Awaitable, Tuple
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Standard event types in the system"""
    # Watch cycle events
    CONTAINER_REPORT = "container_report"
    CONTAINER_REPORTS = "container_reports"

    # Container lifecycle events
    CONTAINER_UPDATE_APPLIED = "container_update_applied"


class Event:
    """
    Standard event object passed through the event bus

    payload is a ContainerReport for CONTAINER_REPORT, a list of them for
    CONTAINER_REPORTS, and the container full name ({watcher}_{name}) for
    CONTAINER_UPDATE_APPLIED.
    """
    def __init__(
        self,
        event_type: EventType,
        payload: Any,
        data: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None
    ):
        self.event_type = event_type
        self.payload = payload
        self.data = data or {}
        self.timestamp = timestamp or datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for logging"""
        return {
            'event_type': self.event_type.value if isinstance(self.event_type, EventType) else str(self.event_type),
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
        }


Handler = Callable[[Event], Awaitable[None]]


class EventBus:
    """
    Centralized event bus for container reports

    Usage:
        bus = EventBus()
        bus.subscribe(EventType.CONTAINER_REPORT, handle_report, order=10)
        await bus.emit(Event(EventType.CONTAINER_REPORT, report))
    """

    def __init__(self):
        self.subscribers: Dict[str, List[Tuple[int, Handler]]] = {}
        logger.info("EventBus initialized")

    @staticmethod
    def _key(event_type: EventType) -> str:
        return event_type.value if isinstance(event_type, EventType) else str(event_type)

    def subscribe(self, event_type: EventType, handler: Handler, order: int = 100):
        """
        Subscribe to specific event type

        Args:
            event_type: Type of event to subscribe to
            handler: Async function that handles the event
            order: Lower values are notified first (stable for equal values)
        """
        event_type_str = self._key(event_type)
        handlers = self.subscribers.setdefault(event_type_str, [])
        handlers.append((order, handler))
        handlers.sort(key=lambda entry: entry[0])
        logger.info(f"Subscribed handler to event type: {event_type_str} (order={order})")

    def unsubscribe(self, event_type: EventType, handler: Handler):
        """
        Unsubscribe from specific event type

        Args:
            event_type: Type of event to unsubscribe from
            handler: Handler function to remove
        """
        event_type_str = self._key(event_type)
        handlers = self.subscribers.get(event_type_str)
        if not handlers:
            logger.warning(f"Handler not found in subscribers for event type: {event_type_str}")
            return

        remaining = [(order, h) for order, h in handlers if h != handler]
        if len(remaining) == len(handlers):
            logger.warning(f"Handler not found in subscribers for event type: {event_type_str}")
            return

        if remaining:
            self.subscribers[event_type_str] = remaining
        else:
            del self.subscribers[event_type_str]
        logger.info(f"Unsubscribed handler from event type: {event_type_str}")

    async def emit(self, event: Event):
        """
        Emit an event to every subscriber of its type

        A failing handler is logged and does not prevent the others from running.
        """
        event_type_str = self._key(event.event_type)
        logger.debug(f"EventBus: Emitting {event_type_str}")

        for _, handler in list(self.subscribers.get(event_type_str, [])):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"EventBus: Error in subscriber handler: {e}", exc_info=True)


# Global singleton instance
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get or create global event bus instance"""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
