"""
Board snapshot diffing.

Compares the previous and the new board snapshot and synthesizes the kanban
events the UI never sends explicitly:

    card id only in new snapshot        → kanban:taskCreated
    card id in both, column changed     → kanban:taskMoved

Deleted cards, field edits, reordering within a column and board/column
renames are not reported.
"""
from typing import Any, Dict, List, Tuple, Union

from .events import EventBus
from .schema import EventType, TaskCreatedEvent, TaskMovedEvent

Change = Tuple[EventType, Union[TaskCreatedEvent, TaskMovedEvent]]


def _items(container: Any, key: str) -> list:
    value = container.get(key) if isinstance(container, dict) else None
    return value if isinstance(value, list) else []


def index_cards(snapshot: Any) -> Dict[str, Dict[str, Any]]:
    """Map card id -> card fields plus the column id and board name holding it."""
    cards: Dict[str, Dict[str, Any]] = {}
    for board in _items(snapshot, "boards"):
        for column in _items(board, "columns"):
            for card in _items(column, "cards"):
                if not isinstance(card, dict) or not isinstance(card.get("id"), (str, int)):
                    continue
                cards[card["id"]] = {
                    **card,
                    "column": column.get("id"),
                    "board": board.get("name"),
                }
    return cards


def detect_changes(old: Any, new: Any) -> List[Change]:
    """List created/moved events, in new-snapshot order."""
    old_cards = index_cards(old)
    changes: List[Change] = []
    for card_id, card in index_cards(new).items():
        previous = old_cards.get(card_id)
        if previous is None:
            changes.append((EventType.TASK_CREATED, TaskCreatedEvent(
                id=card_id,
                title=card.get("title"),
                column=card["column"],
                board=card["board"],
                creator="User",
            )))
        elif previous["column"] != card["column"]:
            changes.append((EventType.TASK_MOVED, TaskMovedEvent(
                id=card_id,
                title=card.get("title"),
                from_column=previous["column"],
                column=card["column"],
                board=card["board"],
                actor="User",
            )))
    return changes


def publish_changes(bus: EventBus, old: Any, new: Any) -> List[Change]:
    """Diff two snapshots and publish every resulting event on the bus."""
    changes = detect_changes(old, new)
    for event_type, payload in changes:
        bus.publish(event_type, payload)
    return changes
