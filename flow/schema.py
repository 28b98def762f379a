"""
FLOW record types and event taxonomy.

Event types are a closed set. Each has a typed payload; only a subset may be
raised from outside the process through /api/trigger.

Stored documents use camelCase keys (the dashboard reads them directly), so
every record maps its snake_case attributes to wire keys in to_dict/from_dict.
"""
import time
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Type


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Utilities
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string, or epoch milliseconds, into an aware datetime.
    None if unparseable.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def make_id(prefix: str) -> str:
    """Sortable unique id: ms timestamp + random hex."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Exceptions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FlowError(Exception):
    """Base class for FLOW server errors."""
    pass


class InvalidRequest(FlowError):
    """Raised when a request body or parameter is malformed (HTTP 400)."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Event taxonomy
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class EventType(Enum):
    """All domain event types. Nothing else is published on the bus."""
    CHAT_MESSAGE = "chat:message"
    TASK_CREATED = "kanban:taskCreated"
    TASK_MOVED = "kanban:taskMoved"
    FILE_EDITED = "kai:fileEdited"

    @classmethod
    def parse(cls, value: Any) -> Optional["EventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


# Event types that may be raised through /api/trigger
TRIGGERABLE_EVENTS = frozenset({
    EventType.TASK_CREATED,
    EventType.TASK_MOVED,
    EventType.FILE_EDITED,
})


def wire(key: str, **kwargs):
    """Dataclass field stored under a different JSON key."""
    return field(metadata={"key": key}, **kwargs)


@dataclass
class Record:
    """Dataclass <-> camelCase dict mapping shared by all stored records."""

    @classmethod
    def _keys(cls) -> Dict[str, str]:
        return {f.name: f.metadata.get("key", f.name) for f in fields(cls) if f.name != "extra"}

    def to_dict(self) -> Dict[str, Any]:
        data = dict(getattr(self, "extra", None) or {})
        for attr, key in self._keys().items():
            data[key] = getattr(self, attr)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise InvalidRequest(f"{cls.__name__} payload must be an object")
        keys = cls._keys()
        kwargs = {attr: data[key] for attr, key in keys.items() if key in data}
        if any(f.name == "extra" for f in fields(cls)):
            known = set(keys.values())
            kwargs["extra"] = {k: v for k, v in data.items() if k not in known}
        record = cls(**kwargs)
        record._source = dict(data)
        return record

    def published(self) -> Dict[str, Any]:
        """The object this record was parsed from, else its own dict form."""
        source = getattr(self, "_source", None)
        return dict(source) if source is not None else self.to_dict()


# ── Event payloads ───────────────────────────────────────────────────────────


@dataclass
class Message(Record):
    """One chat turn in the unified message log."""
    id: str = ""
    channel: str = "flowchat"
    channel_name: str = wire("channelName", default="FlowChat")
    sender: str = ""
    sender_type: str = wire("senderType", default="human")
    text: str = ""
    timestamp: str = ""
    session_id: Optional[str] = wire("sessionId", default=None)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatMessageEvent(Message):
    """Payload of chat:message, the message as stored."""


@dataclass
class TaskCreatedEvent(Record):
    id: Optional[str] = None
    title: str = ""
    column: str = ""
    board: str = ""
    creator: str = "User"
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskMovedEvent(Record):
    id: Optional[str] = None
    title: str = ""
    from_column: str = wire("fromColumn", default="")
    column: str = ""
    board: str = ""
    actor: str = "User"
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FileEditedEvent(Record):
    file: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


EVENT_PAYLOADS: Dict[EventType, Type[Record]] = {
    EventType.CHAT_MESSAGE: ChatMessageEvent,
    EventType.TASK_CREATED: TaskCreatedEvent,
    EventType.TASK_MOVED: TaskMovedEvent,
    EventType.FILE_EDITED: FileEditedEvent,
}


def event_from_dict(event_type: EventType, data: Any) -> Record:
    """Build the typed payload for an event type from a JSON object."""
    if data is None:
        data = {}
    return EVENT_PAYLOADS[event_type].from_dict(data)


# ── Derived records ──────────────────────────────────────────────────────────


@dataclass
class ActivityItem(Record):
    """Human-readable feed entry derived from a domain event."""
    type: str
    icon: str
    actor: str
    actor_type: str = wire("actorType")
    description: str = ""
    board_name: Optional[str] = wire("boardName", default=None)
    id: str = field(default_factory=lambda: make_id("act"))
    timestamp: str = field(default_factory=utc_now)


@dataclass
class MemoryRecord(Record):
    """A distilled fact extracted from a file edit or a daily log."""
    type: str
    content: str
    category: str
    added_by: str = wire("addedBy")
    actor_type: str = wire("actorType")
    icon: str = "📝"
    source: str = ""
    id: str = field(default_factory=lambda: make_id("mem"))
    timestamp: str = field(default_factory=utc_now)
