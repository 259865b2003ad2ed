"""
Event system for distribution lifecycle events.

Event types emitted by the ledger:
    claimed            pool, claim_key, receiver, amount, claimant, timestamp
    claim_rejected     pool, receiver, amount, error
    migration_started  lock_timestamp, migration_timestamp
    remaining_swept    destination, amount, per_pool, timestamp
"""
from typing import Dict, List, Callable, Any, Optional
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple synchronous pub/sub.

    Listener failures are logged and never reach the operation that emitted
    the event (the operation has already committed).
    """

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event name (e.g., 'claimed', 'remaining_swept')
            callback: Function called with the event data as keyword arguments
        """
        self.listeners.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to event: {event_type}")

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        if event_type in self.listeners:
            try:
                self.listeners[event_type].remove(callback)
                logger.debug(f"Unsubscribed from event: {event_type}")
            except ValueError:
                logger.warning(f"Callback not found for event: {event_type}")

    def emit(self, event_type: str, **data: Any) -> None:
        listeners = self.listeners.get(event_type, [])

        if not listeners:
            logger.debug(f"No listeners for event: {event_type}")
            return

        logger.debug(f"Emitting event: {event_type} to {len(listeners)} listener(s)")

        for callback in list(listeners):
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Error in event callback for {event_type}: {e}", exc_info=True)

    def clear(self, event_type: Optional[str] = None) -> None:
        """Clear listeners for one event type, or all listeners."""
        if event_type:
            self.listeners.pop(event_type, None)
            logger.debug(f"Cleared listeners for event: {event_type}")
        else:
            self.listeners.clear()
            logger.debug("Cleared all event listeners")


# Global event bus instance
event_bus = EventBus()
