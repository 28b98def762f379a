"""
Tests for the event bus, the event log, and the activity feed.
"""
import pytest

from flow.activity import ActivityLog
from flow.events import EVENT_LOG_LIMIT
from flow.schema import (
    ChatMessageEvent,
    EventType,
    FileEditedEvent,
    TaskCreatedEvent,
    TaskMovedEvent,
    event_from_dict,
)
from flow.store import ACTIVITY, EVENTS


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Event bus
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_handlers_run_once_in_registration_order(bus):
    """Every handler for the type runs exactly once, in order"""
    calls = []
    bus.subscribe(EventType.FILE_EDITED, lambda e: calls.append(("first", e.file)))
    bus.subscribe(EventType.FILE_EDITED, lambda e: calls.append(("second", e.file)))
    bus.subscribe(EventType.TASK_MOVED, lambda e: calls.append(("other", None)))

    bus.publish(EventType.FILE_EDITED, FileEditedEvent(file="SOUL.md"))

    assert calls == [("first", "SOUL.md"), ("second", "SOUL.md")]


def test_publish_appends_one_log_entry(bus, store):
    """The event log gains exactly one entry with matching type and payload"""
    bus.publish(EventType.TASK_CREATED, TaskCreatedEvent(id="c1", title="Write tests",
                                                         column="todo", board="General"))
    items = store.get(EVENTS)["items"]
    assert len(items) == 1
    assert items[0]["type"] == "kanban:taskCreated"
    assert items[0]["data"]["id"] == "c1"
    assert items[0]["data"]["creator"] == "User"
    assert items[0]["id"].startswith("evt_")
    assert items[0]["timestamp"].endswith("Z")


def test_publish_accepts_string_event_type(bus, store):
    bus.publish("kai:fileEdited", FileEditedEvent(file="USER.md"))
    assert store.get(EVENTS)["items"][0]["type"] == "kai:fileEdited"


def test_event_log_is_capped_fifo(bus, store):
    """Once at cap, each publish evicts the oldest entry"""
    for i in range(EVENT_LOG_LIMIT + 5):
        bus.publish(EventType.FILE_EDITED, FileEditedEvent(file=f"f{i}.md"))

    items = store.get(EVENTS)["items"]
    assert len(items) == EVENT_LOG_LIMIT
    assert items[0]["data"]["file"] == "f5.md"
    assert items[-1]["data"]["file"] == f"f{EVENT_LOG_LIMIT + 4}.md"


def test_raising_handler_aborts_dispatch(bus, store):
    """Handler errors propagate; later handlers and the log write are skipped"""
    calls = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(EventType.FILE_EDITED, broken)
    bus.subscribe(EventType.FILE_EDITED, lambda e: calls.append(e))

    with pytest.raises(RuntimeError):
        bus.publish(EventType.FILE_EDITED, FileEditedEvent(file="SOUL.md"))

    assert calls == []
    assert not store.exists(EVENTS)


def test_recent_defaults_to_empty(bus):
    assert bus.recent()["items"] == []


def test_event_from_dict_keeps_extra_fields():
    event = event_from_dict(EventType.TASK_MOVED, {
        "id": "c1", "title": "T", "fromColumn": "todo", "column": "done", "priority": "high",
    })
    assert isinstance(event, TaskMovedEvent)
    assert event.from_column == "todo"
    data = event.to_dict()
    assert data["fromColumn"] == "todo"
    assert data["priority"] == "high"


def test_event_type_parse_rejects_unknown():
    assert EventType.parse("not:a:real:event") is None
    assert EventType.parse("kanban:taskMoved") is EventType.TASK_MOVED


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Activity feed
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.fixture
def feed(store, bus):
    log = ActivityLog(store)
    log.register(bus)
    return log


def test_activity_templates(feed, bus, store):
    bus.publish(EventType.TASK_CREATED, TaskCreatedEvent(id="c1", title="Plan", column="todo", board="General"))
    bus.publish(EventType.TASK_MOVED, TaskMovedEvent(id="c1", title="Plan", from_column="todo",
                                                     column="done", board="General"))
    bus.publish(EventType.FILE_EDITED, FileEditedEvent(file="SOUL.md"))
    bus.publish(EventType.CHAT_MESSAGE, ChatMessageEvent(sender="Kai", sender_type="ai",
                                                         text="x" * 300, channel="flowchat"))

    chat, edited, moved, created = store.get(ACTIVITY)["activities"]

    assert created["description"] == 'Created task: "Plan"'
    assert created["icon"] == "✅"
    assert created["boardName"] == "General"
    assert moved["description"] == 'Moved "Plan" to done'
    assert moved["actor"] == "User"
    assert edited["description"] == "Edited Kai file: SOUL.md"
    assert edited["boardName"] == "Kai Profile"
    assert chat["type"] == "chat"
    assert chat["actorType"] == "ai"
    assert len(chat["description"]) == 200


def test_activity_newest_first_and_capped(feed, bus, store):
    for i in range(55):
        bus.publish(EventType.FILE_EDITED, FileEditedEvent(file=f"f{i}.md"))

    activities = store.get(ACTIVITY)["activities"]
    assert len(activities) == feed.limit == 50
    assert activities[0]["description"] == "Edited Kai file: f54.md"
    assert activities[-1]["description"] == "Edited Kai file: f5.md"


def test_parsed_payload_logged_as_published(bus, store):
    """A payload built from a JSON object is logged as that object, without dataclass defaults"""
    sent = {"id": "c7", "title": "From CLI", "priority": "high"}
    bus.publish(EventType.TASK_CREATED, event_from_dict(EventType.TASK_CREATED, sent))
    assert store.get(EVENTS)["items"][0]["data"] == sent
