"""
Event bus: fans domain events out to in-process subscribers.

Every publish is also appended to the persisted event log (newest last,
capped at EVENT_LOG_LIMIT, oldest evicted first).

Handlers run synchronously in registration order. The bus does not catch
handler exceptions: a raising handler stops dispatch for that publish and
the event is not logged.
"""
import logging
from typing import Callable, Dict, List, Union

from .schema import EventType, Record, make_id, utc_now
from .store import EVENTS, BlobStore

logger = logging.getLogger(__name__)

EVENT_LOG_LIMIT = 100

Handler = Callable[[Record], None]


def empty_event_log() -> dict:
    return {"items": [], "lastUpdated": utc_now()}


class EventBus:
    """Routes domain events to subscribers and the persisted event log."""

    def __init__(self, store: BlobStore, limit: int = EVENT_LOG_LIMIT):
        self.store = store
        self.limit = limit
        self.subscribers: Dict[EventType, List[Handler]] = {}  # event_type -> ordered callbacks

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """Register a handler for an exact event type."""
        self.subscribers.setdefault(EventType(event_type), []).append(handler)

    def publish(self, event_type: Union[EventType, str], payload: Record) -> dict:
        """Dispatch to every handler for event_type, then log the event."""
        event_type = EventType(event_type)
        for handler in self.subscribers.get(event_type, []):
            handler(payload)
        return self._log_event(event_type, payload)

    def _log_event(self, event_type: EventType, payload: Record) -> dict:
        entry = {
            "id": make_id("evt"),
            "type": event_type.value,
            "data": payload.published(),
            "timestamp": utc_now(),
        }
        try:
            with self.store.lock(EVENTS):
                log = self.store.get(EVENTS, empty_event_log())
                items = log.setdefault("items", [])
                items.append(entry)
                if len(items) > self.limit:
                    log["items"] = items[-self.limit:]
                log["lastUpdated"] = utc_now()
                self.store.put(EVENTS, log)
        except Exception as e:
            logger.error(f"Error logging event {event_type.value}: {e}")
        return entry

    def recent(self) -> dict:
        """The persisted event log document (empty default if absent)."""
        return self.store.get(EVENTS, empty_event_log())
