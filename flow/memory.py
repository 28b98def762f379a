"""
Memory extraction.

Two ways a memory record is created:

    reactive  one record per workspace file edit ("Updated SOUL"), skipped if
              the same edit was already recorded within the last hour
    batch     one record per bullet under "Key Accomplishments" / "Technical
              Decisions" in the DD-MM-YYYY.md daily logs, skipped if the same
              content is already stored

The batch scan runs at startup, then hourly (MemoryRefreshScheduler), and on
demand through /api/memory/refresh.
"""
import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .schema import MemoryRecord, format_timestamp, parse_timestamp, utc_now
from .store import MEMORY, BlobStore

logger = logging.getLogger(__name__)

MEMORY_LIMIT = 50
MAX_CONTENT = 200
MIN_ITEM_LENGTH = 10
EDIT_DEDUP_WINDOW = timedelta(hours=1)
PROFILE_SOURCE = "kai_profile"

# Filename substring -> (category, icon). First match wins.
FILE_CATEGORIES: List[Tuple[Tuple[str, ...], str, str]] = [
    (("SOUL",), "identity", "🌊"),
    (("IDENTITY",), "identity", "🆔"),
    (("USER",), "preference", "👤"),
    (("MEMORY",), "milestone", "🧠"),
    (("trading",), "trading", "📈"),
    (("STRATEGY", "Business"), "business", "💼"),
]
DEFAULT_CATEGORY = ("system", "📝")

DAILY_LOG_RE = re.compile(r"^\d{2}-\d{2}-\d{4}\.md$")
ACCOMPLISHMENTS_RE = re.compile(r"## Key Accomplishments.*?(?=##|\Z)", re.DOTALL)
ACCOMPLISHMENT_ITEM_RE = re.compile(r"- \*\*.*?\*\*.*?(?=\n- \*\*|\n###|\n##|\Z)", re.DOTALL)
DECISIONS_RE = re.compile(r"## Technical Decisions.*?(?=##|\Z)", re.DOTALL)
DECISION_ITEM_RE = re.compile(r"- .*?(?=\n- |\n###|\n##|\Z)", re.DOTALL)
PLACEHOLDER = "None yet"


def categorize_file(file_name: str) -> Tuple[str, str]:
    """(category, icon) for a workspace file name."""
    for needles, category, icon in FILE_CATEGORIES:
        if any(n in file_name for n in needles):
            return category, icon
    return DEFAULT_CATEGORY


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def empty_memory() -> Dict[str, Any]:
    return {"memories": [], "categories": [], "lastUpdated": utc_now()}


def accomplishment_items(content: str) -> List[str]:
    """Bold-lead bullets under "## Key Accomplishments", markup stripped."""
    section = ACCOMPLISHMENTS_RE.search(content)
    if not section:
        return []
    items = []
    for raw in ACCOMPLISHMENT_ITEM_RE.findall(section.group(0)):
        items.append(re.sub(r"^- \*\*", "", raw).replace("**", "").strip())
    return items


def decision_items(content: str) -> List[str]:
    """Plain bullets under "## Technical Decisions"."""
    section = DECISIONS_RE.search(content)
    if not section:
        return []
    items = []
    for raw in DECISION_ITEM_RE.findall(section.group(0)):
        item = re.sub(r"^- ", "", raw).strip()
        if not item.startswith("---"):
            items.append(item)
    return items


class MemoryExtractor:
    """Creates memory records from file edits and daily logs."""

    def __init__(self, store: BlobStore, memory_dir: str,
                 clock: Optional[Callable[[], datetime]] = None,
                 limit: int = MEMORY_LIMIT):
        self.store = store
        self.memory_dir = Path(memory_dir)
        self.clock = clock or _utcnow
        self.limit = limit

    def load(self) -> Dict[str, Any]:
        data = self.store.get(MEMORY, empty_memory())
        if not isinstance(data, dict) or not isinstance(data.get("memories"), list):
            logger.warning("Memory log is malformed, starting from empty")
            data = empty_memory()
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        data["memories"] = data["memories"][:self.limit]
        data["lastUpdated"] = utc_now()
        self.store.put(MEMORY, data)

    # ── Reactive path ───────────────────────────────────────────────────────

    def extract_from_file_edit(self, file_name: str) -> Optional[MemoryRecord]:
        """Record a workspace file edit. Returns None if it is a recent duplicate."""
        category, icon = categorize_file(file_name)
        name = file_name[:-3] if file_name.endswith(".md") else file_name
        now = self.clock()
        record = MemoryRecord(
            type="edit",
            content=f"Updated {name}"[:MAX_CONTENT],
            category=category,
            added_by="Pete",
            actor_type="human",
            icon=icon,
            source=PROFILE_SOURCE,
            timestamp=format_timestamp(now),
        )

        with self.store.lock(MEMORY):
            data = self.load()
            cutoff = now - EDIT_DEDUP_WINDOW
            for m in data["memories"]:
                if not isinstance(m, dict):
                    continue
                ts = parse_timestamp(m.get("timestamp"))
                if (m.get("source") == PROFILE_SOURCE and m.get("content") == record.content
                        and ts is not None and ts > cutoff):
                    return None
            data["memories"].insert(0, record.to_dict())
            self._save(data)

        logger.info(f"Memory extracted from file edit: {file_name}")
        return record

    # ── Batch path ──────────────────────────────────────────────────────────

    def daily_logs(self) -> List[Path]:
        if not self.memory_dir.is_dir():
            return []
        return sorted(p for p in self.memory_dir.iterdir()
                      if p.is_file() and DAILY_LOG_RE.match(p.name))

    def parse_daily_logs(self) -> int:
        """Scan all daily logs and add unseen accomplishments/decisions."""
        logs = self.daily_logs()
        if not logs:
            return 0

        with self.store.lock(MEMORY):
            data = self.load()
            memories = data["memories"]
            known = {m.get("content") for m in memories if isinstance(m, dict)}
            added = 0

            for path in logs:
                content = path.read_text(encoding="utf-8", errors="replace")
                date = path.stem
                found = [
                    ("accomplishment", "milestone", "✅", item)
                    for item in accomplishment_items(content)
                ] + [
                    ("decision", "product", "💡", item)
                    for item in decision_items(content)
                ]
                for kind, category, icon, item in found:
                    text = item[:MAX_CONTENT]
                    if len(item) <= MIN_ITEM_LENGTH or PLACEHOLDER in item or text in known:
                        continue
                    memories.append(MemoryRecord(
                        type=kind,
                        content=text,
                        category=category,
                        added_by="Kai",
                        actor_type="ai",
                        icon=icon,
                        source=f"daily_log_{date}",
                        timestamp=format_timestamp(self.clock()),
                    ).to_dict())
                    known.add(text)
                    added += 1

            memories = [m for m in memories if isinstance(m, dict)]
            memories.sort(key=lambda m: parse_timestamp(m.get("timestamp")) or datetime.min.replace(tzinfo=timezone.utc),
                          reverse=True)
            data["memories"] = memories
            self._save(data)

        logger.info(f"Parsed daily logs for memories, added {added}, total {len(data['memories'])}")
        return added


class MemoryRefreshScheduler:
    """Runs the daily-log scan at start and then every `interval` seconds."""

    def __init__(self, extractor: MemoryExtractor, interval: float = 3600.0):
        self.extractor = extractor
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> None:
        try:
            self.extractor.parse_daily_logs()
        except Exception as e:
            logger.error(f"Error parsing daily logs: {e}")

    def _loop(self) -> None:
        self.run_once()
        while not self._stop.wait(self.interval):
            self.run_once()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="memory-refresh", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
