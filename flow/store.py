"""
JSON document storage backend.

Every logical store (board, events, activity, messages, memory, deliverables)
is one whole JSON file under the data directory. Documents are read whole and
written whole; there are no cross-document transactions.
"""
import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)

# Document names
BOARD = "flow-data"
EVENTS = "events"
ACTIVITY = "activity"
MESSAGES = "messages"
MEMORY = "memory"
DELIVERABLES = "deliverables"


def atomic_write(path: Path, content: str) -> None:
    """Write content via temp file + rename so readers never see a partial file."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class BlobStore:
    """File-backed store of named JSON documents."""

    def __init__(self, data_dir: str):
        """Initialize store and create the data directory if needed."""
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    @contextmanager
    def lock(self, name: str) -> Iterator[None]:
        """Hold the single-writer lock for one document."""
        with self._locks_guard:
            lock = self._locks.setdefault(name, threading.RLock())
        with lock:
            yield

    def read_text(self, name: str) -> Optional[str]:
        """Raw document text, or None if the document does not exist."""
        path = self.path(name)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def get(self, name: str, default: Any = None) -> Any:
        """
        Load a document.

        Missing or malformed documents yield a copy of ``default``; the
        failure is logged, never raised.
        """
        path = self.path(name)
        if not path.is_file():
            return copy.deepcopy(default)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Error loading {path}: {e}")
            return copy.deepcopy(default)

    def put(self, name: str, data: Any) -> None:
        """Replace a document. Raises OSError on I/O failure."""
        atomic_write(self.path(name), json.dumps(data, indent=2, ensure_ascii=False))
