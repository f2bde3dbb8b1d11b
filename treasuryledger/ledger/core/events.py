"""
Event system for treasury lifecycle events.

Provides a simple pub/sub mechanism for deposits, disbursements and
administrative changes.
"""
from typing import Dict, List, Callable, Any, Optional
import logging

logger = logging.getLogger(__name__)

# Events emitted by Treasury
DEPOSIT = "deposit"
DISBURSEMENT = "disbursement"
TOKEN_RETURNED = "token_returned"
STAKING_ADDRESS_UPDATED = "staking_address_updated"
DISBURSE_INTERVAL_UPDATED = "disburse_interval_updated"
RANGE_UPDATED = "range_updated"
TOKEN_UPDATED = "token_updated"
APPROVAL = "approval"
ROLE_GRANTED = "role_granted"
ROLE_REVOKED = "role_revoked"
OPERATION_REJECTED = "operation_rejected"


class EventBus:
    """
    Simple event bus for treasury events.

    Events are delivered synchronously in the emitting thread. A failing
    listener is logged and never affects the operation that emitted the event.
    """

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event name (e.g., 'deposit', 'disbursement')
            callback: Function to call with the event data as keyword arguments
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
        """Emit an event to all subscribers."""
        listeners = list(self.listeners.get(event_type, []))

        if not listeners:
            logger.debug(f"No listeners for event: {event_type}")
            return

        logger.debug(f"Emitting event: {event_type} to {len(listeners)} listener(s)")

        for callback in listeners:
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Error in event callback for {event_type}: {e}", exc_info=True)

    def clear(self, event_type: Optional[str] = None) -> None:
        """Clear all listeners for an event type, or all listeners if no type specified."""
        if event_type:
            self.listeners.pop(event_type, None)
            logger.debug(f"Cleared listeners for event: {event_type}")
        else:
            self.listeners.clear()
            logger.debug("Cleared all event listeners")
