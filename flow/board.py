"""
Board snapshot persistence.

The board is replaced wholesale on every save. The prior snapshot is read
first, only to diff it against the new one.
"""
import copy
import logging
from typing import Any, Dict

from .diff import publish_changes
from .events import EventBus
from .schema import InvalidRequest, utc_now
from .store import BOARD, BlobStore

logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = [
    ("backlog", "Backlog"),
    ("todo", "To Do"),
    ("inprogress", "In Progress"),
    ("done", "Done"),
    ("archive", "Archive"),
]

DEFAULT_BOARDS = [
    ("board_1", "Flow Mind Website"),
    ("board_2", "General"),
    ("board_3", "House Keeping"),
]

DEFAULT_LABELS = [
    {"id": "l1", "name": "feature", "color": "#2eaadc"},
    {"id": "l2", "name": "bug", "color": "#dc4444"},
    {"id": "l3", "name": "done", "color": "#2ecc71"},
    {"id": "l4", "name": "high", "color": "#dc4444"},
    {"id": "l5", "name": "mind", "color": "#f5a623"},
    {"id": "l6", "name": "flow", "color": "#9b59b6"},
]


def default_board() -> Dict[str, Any]:
    """The three-board template written on first load."""
    return {
        "boards": [
            {
                "id": board_id,
                "name": name,
                "type": "kanban",
                "columns": [
                    {"id": col_id, "name": col_name, "cards": []}
                    for col_id, col_name in DEFAULT_COLUMNS
                ],
            }
            for board_id, name in DEFAULT_BOARDS
        ],
        "archivedCards": [],
        "customLabels": copy.deepcopy(DEFAULT_LABELS),
        "settings": {"currentBoard": "board_1"},
        "lastModified": utc_now(),
        "modifiedBy": "system",
    }


class BoardRepository:
    """Loads and saves the board snapshot; saving publishes inferred kanban events."""

    def __init__(self, store: BlobStore, bus: EventBus):
        self.store = store
        self.bus = bus

    def load(self) -> Dict[str, Any]:
        """Return the board, seeding the default template if absent or unreadable."""
        with self.store.lock(BOARD):
            data = self.store.get(BOARD)
            if isinstance(data, dict):
                return data
            logger.info(f"Creating default board data at {self.store.path(BOARD)}")
            data = default_board()
            self.store.put(BOARD, data)
            return data

    def save(self, data: Any) -> Dict[str, Any]:
        """Replace the board snapshot and publish created/moved events."""
        if not isinstance(data, dict):
            raise InvalidRequest("Board data must be a JSON object")
        data["lastModified"] = utc_now()
        data["modifiedBy"] = "user"
        with self.store.lock(BOARD):
            previous = self.load()
            self.store.put(BOARD, data)
        try:
            publish_changes(self.bus, previous, data)
        except Exception as e:
            # The board is already saved; the feed just falls behind.
            logger.error(f"Error detecting kanban changes: {e}")
        return data
