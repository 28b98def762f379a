"""
Activity feed: turns domain events into human-readable timeline entries.

The feed is stored newest-first and capped at ACTIVITY_LIMIT entries.
"""
import logging

from .events import EventBus
from .schema import (
    ActivityItem,
    ChatMessageEvent,
    EventType,
    FileEditedEvent,
    TaskCreatedEvent,
    TaskMovedEvent,
    utc_now,
)
from .store import ACTIVITY, BlobStore

logger = logging.getLogger(__name__)

ACTIVITY_LIMIT = 50


class ActivityLog:
    """Bus subscriber that writes one activity item per domain event."""

    def __init__(self, store: BlobStore, limit: int = ACTIVITY_LIMIT):
        self.store = store
        self.limit = limit

    def register(self, bus: EventBus) -> None:
        """Subscribe all feed handlers on the bus."""
        bus.subscribe(EventType.CHAT_MESSAGE, self.on_chat_message)
        bus.subscribe(EventType.TASK_CREATED, self.on_task_created)
        bus.subscribe(EventType.TASK_MOVED, self.on_task_moved)
        bus.subscribe(EventType.FILE_EDITED, self.on_file_edited)

    # ── Handlers ────────────────────────────────────────────────────────────

    def on_chat_message(self, event: ChatMessageEvent) -> None:
        self.add(ActivityItem(
            type="chat",
            icon="💬",
            actor=event.sender,
            actor_type=event.sender_type or "human",
            description=str(event.text or "")[:200],
            board_name=event.channel,
        ))

    def on_task_created(self, event: TaskCreatedEvent) -> None:
        self.add(ActivityItem(
            type="task",
            icon="✅",
            actor=event.creator or "User",
            actor_type="human",
            description=f'Created task: "{event.title}"',
            board_name=event.board,
        ))

    def on_task_moved(self, event: TaskMovedEvent) -> None:
        self.add(ActivityItem(
            type="task",
            icon="📋",
            actor=event.actor or "User",
            actor_type="human",
            description=f'Moved "{event.title}" to {event.column}',
            board_name=event.board,
        ))

    def on_file_edited(self, event: FileEditedEvent) -> None:
        self.add(ActivityItem(
            type="system",
            icon="🌊",
            actor="Pete",
            actor_type="human",
            description=f"Edited Kai file: {event.file}",
            board_name="Kai Profile",
        ))

    # ── Persistence ─────────────────────────────────────────────────────────

    def add(self, item: ActivityItem) -> None:
        """Prepend an item and truncate the feed. I/O errors are logged."""
        try:
            with self.store.lock(ACTIVITY):
                feed = self.store.get(ACTIVITY, {"activities": [], "lastUpdated": utc_now()})
                activities = feed.get("activities") or []
                activities.insert(0, item.to_dict())
                feed["activities"] = activities[:self.limit]
                feed["lastUpdated"] = utc_now()
                self.store.put(ACTIVITY, feed)
        except Exception as e:
            logger.error(f"Error adding activity: {e}")
