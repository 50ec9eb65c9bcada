"""
In-process event bus
Screens that show derived data (payments list, deliveries list, dashboard)
subscribe here to know when to re-fetch after a reservation changes
"""

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

RESERVATION_UPDATED = "reservation-updated"
RESERVATION_PAYMENT_UPDATED = "reservation-payment-updated"
LIVRAISONS_UPDATED = "livraisons-updated"

Handler = Callable[[dict[str, Any]], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event name"""

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> None:
        if handler not in self._handlers[name]:
            self._handlers[name].append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if handler in self._handlers.get(name, []):
            self._handlers[name].remove(handler)

    def publish(self, name: str, payload: dict[str, Any]) -> int:
        """
        Deliver an event to every subscriber.
        A failing subscriber is logged and skipped; returns how many succeeded.
        """
        delivered = 0
        for handler in list(self._handlers.get(name, [])):
            try:
                handler(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"❌ Subscriber {getattr(handler, '__name__', handler)} failed on {name}: {e}")
        logger.debug(f"📡 {name} delivered to {delivered} subscriber(s)")
        return delivered


# Process-wide bus used by the HTTP layer
event_bus = EventBus()


def get_event_bus() -> EventBus:
    return event_bus
